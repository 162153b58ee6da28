#!/usr/bin/env python3
"""FLA (file link address) table tools for Tomba!.

MAIN0.EXE carries a table telling the game where each file starts on the
disc and how big it is. When a modified file changes size, everything after
it moves on the disc and the table has to follow.

FLA entry (8 bytes):
  0x00: u8 minutes  (BCD)
  0x01: u8 seconds  (BCD)
  0x02: u8 sectors  (BCD, 0-74)
  0x03: u8 unused
  0x04: u32 LE file size

The table sits at 0x6E6F0 inside EXE/MAIN0.EXE. Entries are linked to disc
files by comparing their timecode with each file's absolute MSF.

Recalculation walks the size changes in entry order, keeps a running byte
delta, and moves every later linked entry by that delta rounded up to whole
2048-byte sectors. The new table is written back into MAIN0.EXE inside the
modified image. The patched bytes are snapshotted first and put back if the
read-back check fails.

Usage:
  tombatools fla recalc original.bin modified.bin
  tombatools fla recalc -v --save-table fla_table.bin original.bin modified.bin
"""

import os
import struct
from contextlib import contextmanager
from typing import NamedTuple

from tombatools.common.iso9660 import ISO9660Reader, DATA_SIZE, raw_spans
from tombatools.common.psx import bcd_to_int, int_to_bcd, is_valid_bcd

FLA_OFFSET = 0x6E6F0
FLA_ENTRY_SIZE = 8
MAIN_EXE_PATH = 'EXE/MAIN0.EXE'
PATTERN_START = 0x2000
PATTERN_WINDOW = 10
PATTERN_MIN_ENTRIES = 5
MAX_FILE_SIZE = 700 * 1024 * 1024


class Timecode(NamedTuple):
    minutes: int
    seconds: int
    sectors: int
    unused: int = 0

    @classmethod
    def from_bytes(cls, data, offset=0):
        return cls(*data[offset:offset + 4])

    @classmethod
    def from_sectors(cls, total, unused=0):
        minutes, rest = divmod(total, 4500)
        seconds, frames = divmod(rest, 75)
        return cls(int_to_bcd(minutes), int_to_bcd(seconds), int_to_bcd(frames), unused)

    def pack(self):
        return bytes((self.minutes, self.seconds, self.sectors, self.unused))

    def is_valid(self):
        fields = (self.minutes, self.seconds, self.sectors)
        if not all(is_valid_bcd(v) for v in fields):
            return False
        return (bcd_to_int(self.minutes) <= 99 and bcd_to_int(self.seconds) <= 59
                and bcd_to_int(self.sectors) <= 74)

    def to_sectors(self):
        return (bcd_to_int(self.minutes) * 4500 + bcd_to_int(self.seconds) * 75
                + bcd_to_int(self.sectors))

    def decimal(self):
        """MM:SS:FF with decoded BCD fields, comparable to a disc file's MSF."""
        return (f"{bcd_to_int(self.minutes):02d}:{bcd_to_int(self.seconds):02d}:"
                f"{bcd_to_int(self.sectors):02d}")

    def __str__(self):
        return f"{self.minutes:02X}:{self.seconds:02X}:{self.sectors:02X}"


class FLAEntry:
    def __init__(self, timecode, file_size, linked_file=None):
        self.timecode = timecode
        self.file_size = file_size
        self.linked_file = linked_file

    @classmethod
    def from_bytes(cls, data, offset=0):
        size = struct.unpack('<I', data[offset + 4:offset + 8])[0]
        return cls(Timecode.from_bytes(data, offset), size)

    def pack(self):
        return self.timecode.pack() + struct.pack('<I', self.file_size)

    def is_plausible(self):
        return self.timecode.is_valid() and 0 < self.file_size <= MAX_FILE_SIZE

    def __repr__(self):
        name = self.linked_file['path'] if self.linked_file else None
        return f"FLAEntry({self.timecode}, {self.file_size}, {name})"


class FLATable:
    def __init__(self, offset, entries, main_lba=None):
        self.offset = offset
        self.entries = entries
        self.main_lba = main_lba

    @property
    def count(self):
        return len(self.entries)

    def pack(self):
        return b''.join(entry.pack() for entry in self.entries)


class FLADifference(NamedTuple):
    index: int
    timecode_changed: bool
    size_changed: bool
    original_size: int
    modified_size: int
    path: str
    description: str


def count_valid_entries(data, offset):
    count = 0
    pos = offset
    while pos + FLA_ENTRY_SIZE <= len(data):
        if not FLAEntry.from_bytes(data, pos).is_plausible():
            break
        count += 1
        pos += FLA_ENTRY_SIZE
    return count


def looks_like_table(data, offset, window=PATTERN_WINDOW):
    """At least 70% of the first ``window`` entries are plausible."""
    if offset + window * FLA_ENTRY_SIZE > len(data):
        return False
    valid = sum(1 for i in range(window)
                if FLAEntry.from_bytes(data, offset + i * FLA_ENTRY_SIZE).is_plausible())
    return valid / window >= 0.7


def find_table_by_pattern(exe):
    for offset in range(PATTERN_START, len(exe) - FLA_ENTRY_SIZE * PATTERN_WINDOW, 4):
        if looks_like_table(exe, offset):
            count = count_valid_entries(exe, offset)
            if count >= PATTERN_MIN_ENTRIES:
                return offset, count
    return 0, 0


def locate_table(exe, verbose=False):
    """Return (offset, entry_count) of the FLA table inside MAIN0.EXE bytes."""
    count = count_valid_entries(exe, FLA_OFFSET) if FLA_OFFSET < len(exe) else 0
    if count:
        if verbose:
            print(f"  FLA table at known offset 0x{FLA_OFFSET:X}: {count} entries")
        return FLA_OFFSET, count
    if verbose:
        print(f"  No valid entries at 0x{FLA_OFFSET:X}, falling back to pattern search")
    offset, count = find_table_by_pattern(exe)
    if not count:
        raise ValueError("FLA table not found in executable")
    if verbose:
        print(f"  FLA table found by pattern at 0x{offset:X}: {count} entries")
    return offset, count


def read_table(exe, offset, count):
    end = offset + count * FLA_ENTRY_SIZE
    if end > len(exe):
        raise ValueError(f"FLA table at 0x{offset:X} with {count} entries runs past end of executable")
    entries = [FLAEntry.from_bytes(exe, offset + i * FLA_ENTRY_SIZE) for i in range(count)]
    return FLATable(offset, entries)


def link_table(table, files):
    """Attach each entry to the disc file whose MSF matches its timecode."""
    by_msf = {}
    for entry in files:
        by_msf.setdefault(entry['msf'], entry)
    linked = 0
    for entry in table.entries:
        entry.linked_file = by_msf.get(entry.timecode.decimal())
        if entry.linked_file is not None:
            linked += 1
    return linked


def sector_delta(byte_offset):
    """Whole sectors covering a byte offset, rounded up (toward +inf)."""
    return -(-byte_offset // DATA_SIZE)


@contextmanager
def region_backup(f, spans):
    """Snapshot the raw spans of ``f``; write them back if the block raises."""
    saved = []
    for raw_pos, start, end in spans:
        f.seek(raw_pos)
        saved.append((raw_pos, f.read(end - start)))
    try:
        yield saved
    except BaseException:
        for raw_pos, chunk in saved:
            f.seek(raw_pos)
            f.write(chunk)
        f.flush()
        os.fsync(f.fileno())
        print(f"  Restored {sum(len(c) for _, c in saved)} original bytes")
        raise


class FLAProcessor:
    def __init__(self, verbose=False):
        self.verbose = verbose

    def analyze_image(self, image_path):
        """Read the FLA table out of an image and link it to the image's files.

        Returns (table, files).
        """
        with ISO9660Reader(image_path, verbose=self.verbose) as reader:
            files = reader.list_files()
            main = self._find_main(files, image_path)
            exe = reader.extract_file(main['lba'], main['size'])
        offset, count = locate_table(exe, self.verbose)
        table = read_table(exe, offset, count)
        table.main_lba = main['lba']
        linked = link_table(table, files)
        if self.verbose:
            print(f"  {MAIN_EXE_PATH} at LBA {main['lba']}, {linked}/{count} entries linked to files")
        return table, files

    def _find_main(self, files, image_path):
        for entry in files:
            if entry['path'].upper() == MAIN_EXE_PATH:
                return entry
        raise ValueError(f"{image_path}: {MAIN_EXE_PATH} not found")

    def compare_tables(self, original, modified):
        """Entry-by-entry comparison of two tables."""
        if original.count != modified.count:
            raise ValueError(f"FLA tables have different entry counts: "
                             f"original={original.count}, modified={modified.count}")
        differences = []
        for i, (orig, mod) in enumerate(zip(original.entries, modified.entries)):
            timecode_changed = orig.timecode[:3] != mod.timecode[:3]
            orig_size, mod_size = orig.file_size, mod.file_size
            if orig.linked_file and mod.linked_file and orig.linked_file['size'] != mod.linked_file['size']:
                orig_size, mod_size = orig.linked_file['size'], mod.linked_file['size']
            size_changed = orig_size != mod_size
            if not (timecode_changed or size_changed):
                continue
            changes = []
            if timecode_changed:
                changes.append(f"MSF: {orig.timecode} -> {mod.timecode}")
            if size_changed:
                changes.append(f"Size: {orig_size} -> {mod_size} bytes")
            path = orig.linked_file['path'] if orig.linked_file else ''
            differences.append(FLADifference(i, timecode_changed, size_changed, orig_size, mod_size,
                                             path, f"Entry {i:04X}: {', '.join(changes)}"))
        return differences

    def compare_files(self, original, modified, original_files, modified_files):
        """Size differences between the files linked from the original table."""
        if original.count != modified.count:
            raise ValueError(f"FLA tables have different entry counts: "
                             f"original={original.count}, modified={modified.count}")
        orig_map = {f['path']: f for f in original_files}
        mod_map = {f['path']: f for f in modified_files}

        differences = []
        for i, entry in enumerate(original.entries):
            if entry.linked_file is None:
                continue
            path = entry.linked_file['path']
            orig_file = orig_map.get(path)
            mod_file = mod_map.get(path)
            if orig_file is None or mod_file is None:
                side = 'modified' if orig_file else 'original'
                print(f"Warning: entry {i:04X}: {path} missing from {side} image, skipped")
                continue
            if orig_file['size'] == mod_file['size']:
                continue
            diff = FLADifference(
                index=i,
                timecode_changed=orig_file['msf'] != mod_file['msf'],
                size_changed=True,
                original_size=orig_file['size'],
                modified_size=mod_file['size'],
                path=path,
                description=(f"Entry {i:04X}: Size changed from {orig_file['size']} "
                             f"to {mod_file['size']} bytes for file {path}"),
            )
            differences.append(diff)
            if self.verbose:
                print(f"  {diff.description}")
        return differences

    def recalculate(self, differences, original, modified):
        """Apply size changes to ``modified`` and shift later linked entries.

        Only entries linked to a file in the original table are moved.
        """
        cumulative = 0
        for diff in sorted(differences, key=lambda d: d.index):
            cumulative += diff.modified_size - diff.original_size
            entry = modified.entries[diff.index]
            if self.verbose:
                print(f"  Entry {diff.index:04X}: size {entry.file_size} -> {diff.modified_size}, "
                      f"cumulative offset {cumulative:+d}")
            entry.file_size = diff.modified_size
            shift = sector_delta(cumulative)

            for j in range(diff.index + 1, original.count):
                if original.entries[j].linked_file is None:
                    continue
                orig_tc = original.entries[j].timecode
                target = max(0, orig_tc.to_sectors() + shift)
                new_tc = Timecode.from_sectors(target, modified.entries[j].timecode.unused)
                if self.verbose and new_tc != modified.entries[j].timecode:
                    print(f"    Entry {j:04X}: MSF {orig_tc} -> {new_tc}")
                modified.entries[j].timecode = new_tc
        return modified

    def write_table(self, table, image_path):
        """Patch the table into MAIN0.EXE inside the image, verifying by read-back.

        The patched bytes are restored if the write or the verification fails.
        """
        with ISO9660Reader(image_path) as reader:
            main = self._find_main(reader.list_files(), image_path)
        logical = main['lba'] * DATA_SIZE + table.offset
        data = table.pack()
        spans = raw_spans(logical, len(data))
        image_size = os.path.getsize(image_path)

        print(f"  {MAIN_EXE_PATH} at LBA {main['lba']}, FLA table at logical 0x{logical:X} "
              f"({table.count} entries, {len(data)} bytes)")
        last_pos, last_start, last_end = spans[-1]
        if last_pos + (last_end - last_start) > image_size:
            raise IOError(f"target offset 0x{spans[0][0]:X} (+{len(data)} bytes) "
                          f"is beyond image size {image_size}")

        with open(image_path, 'r+b') as f:
            with region_backup(f, spans):
                for raw_pos, start, end in spans:
                    f.seek(raw_pos)
                    written = f.write(data[start:end])
                    if written != end - start:
                        raise IOError(f"incomplete write at 0x{raw_pos:X}: "
                                      f"expected {end - start} bytes, wrote {written}")
                    if self.verbose:
                        print(f"    wrote {written} bytes at 0x{raw_pos:X}")
                f.flush()
                os.fsync(f.fileno())

                for raw_pos, start, end in spans:
                    f.seek(raw_pos)
                    if f.read(end - start) != data[start:end]:
                        raise IOError(f"verification failed at 0x{raw_pos:X}: "
                                      f"read-back does not match written FLA data")
        print("  Verification successful: written data matches read-back data")

    def save_table(self, table, path):
        with open(path, 'wb') as f:
            f.write(table.pack())
        if self.verbose:
            print(f"  Saved {table.count} FLA entries to {path}")
