"""Dump every file of a PSX CD image (raw 2352-byte sectors) to a directory.

Directory structure on the disc is kept as is.

Usage:
  tombatools cd dump TOMBA.bin ./disc/
  tombatools cd dump -v TOMBA.bin ./disc/
"""

import os

from tombatools.common.iso9660 import ISO9660Reader


class CDDumper:
    def __init__(self, verbose=False):
        self.verbose = verbose

    def dump(self, image_path, output_dir):
        """Extract all files; returns (file_count, total_bytes)."""
        print(f"Processing CD image: {image_path}")
        os.makedirs(output_dir, exist_ok=True)

        with ISO9660Reader(image_path, verbose=self.verbose) as reader:
            files = reader.list_files()
            total = 0
            for i, entry in enumerate(files):
                if self.verbose:
                    print(f"ID: {i:04X} | MSF: {entry['msf']} | LBA: {entry['lba']:08d} | "
                          f"Size: {entry['size']:10d} | {entry['path']}")
                out_path = os.path.join(output_dir, *entry['path'].split('/'))
                reader.extract_to(entry['lba'], entry['size'], out_path)
                total += entry['size']

        print(f"Extracted {len(files)} files ({total} bytes) to {output_dir}")
        return len(files), total
