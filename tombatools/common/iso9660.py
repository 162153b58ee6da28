import struct
import os

# ISO9660 Constants
SECTOR_SIZE = 2352
HEADER_SIZE = 16
SUBHEADER_SIZE = 8
DATA_OFFSET = HEADER_SIZE + SUBHEADER_SIZE  # Mode 2 Form 1 user data
DATA_SIZE = 2048
PVD_SECTOR = 16
MSF_LEAD_IN = 150  # 2 second pregap
MAX_FILE_SIZE = 700 * 1024 * 1024

def read_sector(f, sector_num):
    """Reads sector data handling Mode 1 and Mode 2 Form 1/2."""
    f.seek(sector_num * SECTOR_SIZE)
    raw = f.read(SECTOR_SIZE)

    if len(raw) < SECTOR_SIZE:
        return b''

    # Mode is at offset 15
    mode = raw[15]

    if mode == 1:
        # Mode 1: Header 16, Data 2048
        return raw[16:16+2048]
    elif mode == 2:
        # Submode is at offset 18 (16 + 2)
        submode = raw[18]
        if submode & 0x20: # Form 2 bit
            return raw[24:24+2324]
        else:
            return raw[24:24+2048]
    return raw[DATA_OFFSET:DATA_OFFSET+DATA_SIZE]

def logical_to_raw(offset):
    """Map a 2048-byte-sector logical address to its byte position in a raw image."""
    return (offset // DATA_SIZE) * SECTOR_SIZE + DATA_OFFSET + offset % DATA_SIZE

def raw_spans(offset, length):
    """Split a logical byte range into (raw_pos, start, end) runs that stay inside one sector.

    ``start``/``end`` index into the logical range, so data[start:end] goes to raw_pos.
    """
    spans = []
    done = 0
    while done < length:
        pos = offset + done
        chunk = min(DATA_SIZE - pos % DATA_SIZE, length - done)
        spans.append((logical_to_raw(pos), done, done + chunk))
        done += chunk
    return spans

def lba_to_msf(lba):
    """Absolute MSF string (MM:SS:FF) for a logical block address."""
    total = lba + MSF_LEAD_IN
    return f"{total // 4500:02d}:{(total % 4500) // 75:02d}:{total % 75:02d}"

def size_in_sectors(size):
    return (size + DATA_SIZE - 1) // DATA_SIZE

def clean_identifier(name):
    """Strip the ';1' version suffix and a trailing dot."""
    name = name.split(';')[0]
    if name.endswith('.') and name not in ('.', '..'):
        name = name[:-1]
    return name

def is_valid_filename(name):
    if not name or len(name) > 255:
        return False
    if name.count('\x00') > len(name) // 2:
        return False
    return all(32 <= ord(c) < 127 for c in name)

class ISO9660Reader:
    def __init__(self, bin_path, verbose=False):
        self.path = bin_path
        self.verbose = verbose
        self.f = open(bin_path, 'rb')
        try:
            self._parse_pvd()
        except ValueError:
            self.f.close()
            raise

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _parse_pvd(self):
        # Read Primary Volume Descriptor
        self.pvd = read_sector(self.f, PVD_SECTOR)
        if len(self.pvd) < 190:
            raise ValueError(f"{self.path}: image too small for a volume descriptor at sector {PVD_SECTOR}")
        if self.pvd[0] != 1 or self.pvd[1:6] != b'CD001' or self.pvd[6] != 1:
            raise ValueError(f"{self.path}: not an ISO9660 image (no CD001 descriptor at sector {PVD_SECTOR})")
        self.volume_id = self.pvd[40:72].decode('ascii', errors='ignore').strip()
        self.volume_sectors = struct.unpack('<I', self.pvd[80:84])[0]
        # Root Directory Record starts at byte 156
        self.root_record = self.pvd[156:190]
        # Parse Root LBA (Location of Extent) - Offset 2 in record, 4 bytes LE, 4 bytes BE
        self.root_lba = struct.unpack('<I', self.root_record[2:6])[0]
        self.root_size = struct.unpack('<I', self.root_record[10:14])[0]
        if self.verbose:
            print(f"Volume '{self.volume_id}': {self.volume_sectors} sectors, "
                  f"root at LBA {self.root_lba} ({self.root_size} bytes)")

    def list_files(self, include_dirs=False):
        """Recursively list files as dict records.

        Each record has name, path ('DIR/NAME'), lba, size, msf and is_dir.
        """
        files = []
        self._scan_dir(self.root_lba, self.root_size, files, include_dirs=include_dirs)
        return files

    def _valid_record(self, ext_lba, ext_size, name):
        if ext_lba == 0 or (self.volume_sectors and ext_lba >= self.volume_sectors):
            return False
        if ext_size > MAX_FILE_SIZE:
            return False
        return is_valid_filename(name)

    def _scan_dir(self, lba, size, file_list, path_prefix="", include_dirs=False, seen=None):
        if seen is None:
            seen = set()
        if lba in seen:
            return
        seen.add(lba)

        for i in range(size_in_sectors(size)):
            data = read_sector(self.f, lba + i)
            offset = 0
            while offset < len(data):
                length = data[offset]
                if length == 0:
                    # Records never cross sectors; rest is padding
                    break

                record = data[offset : offset + length]
                offset += length
                if len(record) < 33:
                    continue

                ext_lba = struct.unpack('<I', record[2:6])[0]
                ext_size = struct.unpack('<I', record[10:14])[0]
                flags = record[25]
                name_len = record[32]
                raw_name = record[33 : 33 + name_len]

                if raw_name in (b'\x00', b'\x01'):
                    continue
                name = clean_identifier(raw_name.decode('ascii', errors='replace'))
                if not self._valid_record(ext_lba, ext_size, name):
                    if self.verbose:
                        print(f"  -- skipping invalid record '{name}' (LBA {ext_lba}, size {ext_size})")
                    continue

                full_name = f"{path_prefix}/{name}" if path_prefix else name
                entry = {
                    'name': name,
                    'path': full_name,
                    'lba': ext_lba,
                    'size': ext_size,
                    'msf': lba_to_msf(ext_lba),
                    'is_dir': bool(flags & 2),
                }
                if not entry['is_dir']:
                    file_list.append(entry)
                else:
                    if include_dirs:
                        file_list.append(entry)
                    self._scan_dir(ext_lba, ext_size, file_list, full_name, include_dirs, seen)

    def find_file(self, path):
        """Look up a file record by its 'DIR/NAME' path, case-insensitive."""
        wanted = path.replace('\\', '/').strip('/').upper()
        for entry in self.list_files():
            if entry['path'].upper() == wanted:
                return entry
        return None

    def extract_file(self, lba, size):
        chunks = []
        for i in range(size_in_sectors(size)):
            chunks.append(read_sector(self.f, lba + i))
        return b''.join(chunks)[:size]

    def extract_to(self, lba, size, out_path):
        """Stream a file to disk sector by sector."""
        os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
        remaining = size
        with open(out_path, 'wb') as out:
            for i in range(size_in_sectors(size)):
                chunk = read_sector(self.f, lba + i)
                if not chunk:
                    raise ValueError(f"{self.path}: sector {lba + i} beyond end of image")
                out.write(chunk[:min(DATA_SIZE, remaining)])
                remaining -= DATA_SIZE

    def close(self):
        self.f.close()
