#!/usr/bin/env python3
"""tombatools command line.

Usage:
  tombatools wfm decode CFNT999H.WFM ./output/ [--fonts DIR] [-v]
  tombatools wfm encode dialogues.yaml CFNT999H.WFM [--fonts DIR] [-v]
  tombatools gam unpack GAME.GAM data.UNGAM [-v]
  tombatools gam pack data.UNGAM GAME.GAM [-v]
  tombatools cd dump TOMBA.bin ./disc/ [-v]
  tombatools fla recalc original.bin modified.bin [-s fla_table.bin] [-v]
"""

import argparse
import sys
import traceback

from tombatools import __version__
from tombatools.cd_dump import CDDumper
from tombatools.fla import FLAProcessor
from tombatools.gam import GAMProcessor
from tombatools.wfm_build import WFMEncoder
from tombatools.wfm_extract import WFMConverter, WFMExporter
from tombatools.wfm_format import WFMDecoder


def cmd_wfm_decode(args):
    print(f"Processing WFM file: {args.input}")
    converter = WFMConverter(WFMDecoder(verbose=args.verbose),
                             WFMExporter(args.fonts, verbose=args.verbose))
    wfm = converter.process(args.input, args.output)
    print(f"  OK {wfm.header.total_glyphs} glyphs, {wfm.header.total_dialogues} dialogues -> {args.output}")


def cmd_wfm_encode(args):
    print(f"Encoding dialogues: {args.input}")
    WFMEncoder(args.fonts, verbose=args.verbose).encode(args.input, args.output)


def cmd_gam_unpack(args):
    print(f"Unpacking GAM file: {args.input}")
    GAMProcessor(verbose=args.verbose).unpack(args.input, args.output)


def cmd_gam_pack(args):
    print(f"Packing GAM file: {args.input}")
    GAMProcessor(verbose=args.verbose).pack(args.input, args.output)


def cmd_cd_dump(args):
    CDDumper(verbose=args.verbose).dump(args.image, args.output)


def print_fla_report(differences, modified):
    print(f"{'ID':<4} | {'FLA MSF':<14} | {'Original Size':<13} | {'Modified Size':<13} | "
          f"{'Size Diff':<9} | File")
    print('-' * 80)
    for diff in differences:
        entry = modified.entries[diff.index]
        delta = diff.modified_size - diff.original_size
        print(f"{diff.index:04X} | {str(entry.timecode):<14} | {diff.original_size:<13d} | "
              f"{diff.modified_size:<13d} | {f'{delta:+d}':<9} | {diff.path}")


def cmd_fla_recalc(args):
    processor = FLAProcessor(verbose=args.verbose)

    print(f"Analyzing original image: {args.original}")
    original, original_files = processor.analyze_image(args.original)
    print(f"Analyzing modified image: {args.modified}")
    modified, modified_files = processor.analyze_image(args.modified)
    print(f"  FLA table: {original.count} entries at 0x{original.offset:X}")

    differences = processor.compare_files(original, modified, original_files, modified_files)
    if not differences:
        print("No file size changes found, FLA table left untouched")
        return

    before = [entry.timecode for entry in modified.entries]
    processor.recalculate(differences, original, modified)
    moved = sum(1 for old, entry in zip(before, modified.entries) if old != entry.timecode)

    print_fla_report(differences, modified)
    total = sum(d.modified_size - d.original_size for d in differences)
    print(f"\nSummary: {len(differences)} files changed size ({total:+d} bytes), "
          f"{moved} FLA entries moved")

    print(f"Writing FLA table to: {args.modified}")
    processor.write_table(modified, args.modified)
    if args.save_table:
        processor.save_table(modified, args.save_table)
        print(f"  FLA table saved to {args.save_table}")
    print("  OK FLA table updated")


def build_parser():
    parser = argparse.ArgumentParser(prog='tombatools', description="Tomba! (PSX) modding tools")
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    groups = parser.add_subparsers(dest='group', required=True)

    verbose = argparse.ArgumentParser(add_help=False)
    verbose.add_argument('-v', '--verbose', action='store_true', help="Print debug detail")

    wfm = groups.add_parser('wfm', help="WFM font/dialogue files").add_subparsers(dest='command', required=True)
    p = wfm.add_parser('decode', parents=[verbose], help="Export glyphs and dialogues.yaml")
    p.add_argument('input', help="WFM file")
    p.add_argument('output', help="Output directory")
    p.add_argument('--fonts', default='fonts', help="Reference font directory (default: fonts)")
    p.set_defaults(func=cmd_wfm_decode)
    p = wfm.add_parser('encode', parents=[verbose], help="Build a WFM file from dialogues.yaml")
    p.add_argument('input', help="dialogues.yaml")
    p.add_argument('output', help="WFM file to write")
    p.add_argument('--fonts', default='fonts', help="Reference font directory (default: fonts)")
    p.set_defaults(func=cmd_wfm_encode)

    gam = groups.add_parser('gam', help="GAM compressed files").add_subparsers(dest='command', required=True)
    p = gam.add_parser('unpack', parents=[verbose], help="Decompress a GAM file")
    p.add_argument('input')
    p.add_argument('output')
    p.set_defaults(func=cmd_gam_unpack)
    p = gam.add_parser('pack', parents=[verbose], help="Compress a file into GAM")
    p.add_argument('input')
    p.add_argument('output')
    p.set_defaults(func=cmd_gam_pack)

    cd = groups.add_parser('cd', help="CD images").add_subparsers(dest='command', required=True)
    p = cd.add_parser('dump', parents=[verbose], help="Extract every file of an image")
    p.add_argument('image', help="Raw .bin image (2352-byte sectors)")
    p.add_argument('output', help="Output directory")
    p.set_defaults(func=cmd_cd_dump)

    fla = groups.add_parser('fla', help="FLA table in MAIN0.EXE").add_subparsers(dest='command', required=True)
    p = fla.add_parser('recalc', parents=[verbose], help="Recalculate the FLA table of a modified image")
    p.add_argument('original', help="Original image")
    p.add_argument('modified', help="Modified image (patched in place)")
    p.add_argument('-s', '--save-table', help="Also save the new table as raw 8-byte records")
    p.set_defaults(func=cmd_fla_recalc)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except (ValueError, OSError) as e:
        if args.verbose:
            traceback.print_exc()
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
