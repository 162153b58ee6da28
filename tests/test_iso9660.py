import pytest

from cdimage import CDImageBuilder, raw_sector

from tombatools.cd_dump import CDDumper
from tombatools.common.iso9660 import (
    DATA_OFFSET, SECTOR_SIZE, ISO9660Reader, clean_identifier, lba_to_msf, logical_to_raw,
    raw_spans,
)


@pytest.fixture
def image(tmp_path):
    builder = CDImageBuilder(dirs=('EXE', 'XA'))
    builder.add_file('SYSTEM.CNF', b'BOOT = cdrom:\\EXE\\MAIN0.EXE;1\r\n')
    builder.add_file('EXE/MAIN0.EXE', bytes(range(256)) * 20)
    builder.add_file('XA/VOICE.XA', b'\x55' * 2048)
    return builder, builder.write(str(tmp_path / 'tomba.bin'))


def test_helpers():
    assert lba_to_msf(0) == '00:02:00'
    assert lba_to_msf(24) == '00:02:24'
    assert lba_to_msf(4350) == '01:00:00'
    assert clean_identifier('MAIN0.EXE;1') == 'MAIN0.EXE'
    assert clean_identifier('README.;1') == 'README'
    assert logical_to_raw(0) == DATA_OFFSET
    assert logical_to_raw(2048 + 5) == SECTOR_SIZE + DATA_OFFSET + 5


def test_raw_spans_split_at_sector_edges():
    assert raw_spans(100, 16) == [(DATA_OFFSET + 100, 0, 16)]
    assert raw_spans(2040, 16) == [(DATA_OFFSET + 2040, 0, 8), (SECTOR_SIZE + DATA_OFFSET, 8, 16)]


def test_list_files(image):
    builder, path = image
    with ISO9660Reader(path) as reader:
        assert reader.volume_id == 'TOMBA'
        files = {f['path']: f for f in reader.list_files()}
        assert set(files) == {'SYSTEM.CNF', 'EXE/MAIN0.EXE', 'XA/VOICE.XA'}
        main = files['EXE/MAIN0.EXE']
        assert main['name'] == 'MAIN0.EXE'
        assert main['lba'] == builder.lba('EXE/MAIN0.EXE')
        assert main['size'] == 5120
        assert main['msf'] == lba_to_msf(main['lba'])
        assert not main['is_dir']

        dirs = [f for f in reader.list_files(include_dirs=True) if f['is_dir']]
        assert sorted(d['path'] for d in dirs) == ['EXE', 'XA']


def test_find_and_extract(image):
    _, path = image
    with ISO9660Reader(path) as reader:
        main = reader.find_file('exe\\main0.exe')
        assert main['path'] == 'EXE/MAIN0.EXE'
        assert reader.extract_file(main['lba'], main['size']) == bytes(range(256)) * 20
        assert reader.find_file('EXE/NOPE.EXE') is None


def test_not_an_iso(tmp_path):
    path = tmp_path / 'junk.bin'
    path.write_bytes(b''.join(raw_sector(i) for i in range(20)))
    with pytest.raises(ValueError, match='not an ISO9660 image'):
        ISO9660Reader(str(path))
    path.write_bytes(b'\x00' * 100)
    with pytest.raises(ValueError):
        ISO9660Reader(str(path))


def test_dump(image, tmp_path, capsys):
    _, path = image
    count, total = CDDumper(verbose=True).dump(path, str(tmp_path / 'disc'))
    assert count == 3
    assert total == 5120 + 2048 + len(b'BOOT = cdrom:\\EXE\\MAIN0.EXE;1\r\n')
    assert (tmp_path / 'disc' / 'EXE' / 'MAIN0.EXE').read_bytes() == bytes(range(256)) * 20
    assert (tmp_path / 'disc' / 'XA' / 'VOICE.XA').read_bytes() == b'\x55' * 2048
    assert '| EXE/MAIN0.EXE' in capsys.readouterr().out
