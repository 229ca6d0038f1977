#!/usr/bin/env python3
"""List the font/style names the certificate renderer accepts"""

from app import STANDARD_FONTS, resolve_font


def find_fonts():
    """(family, style, reportlab font) for every built-in combination"""
    fonts = []
    for family, styles in STANDARD_FONTS.items():
        for style in styles:
            fonts.append((family, style, resolve_font(family, style)))
    return fonts


if __name__ == '__main__':
    print("Built-in fonts:\n")
    fonts = find_fonts()
    for i, (family, style, face) in enumerate(fonts, 1):
        print(f"{i}. {family} / {style}")
        print(f"   Font: {face}\n")

    print(f"\nTotal: {len(fonts)} combinations (a path to a .ttf file also works)")
