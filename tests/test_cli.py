from test_fla import write_pair

from tombatools.cli import main
from tombatools.fla import FLAProcessor
from tombatools.gam import build_gam


def test_gam_commands(tmp_path, capsys):
    raw = b'Tomba! ' * 100
    (tmp_path / 'a.GAM').write_bytes(build_gam(raw))
    assert main(['gam', 'unpack', str(tmp_path / 'a.GAM'), str(tmp_path / 'a.UNGAM')]) == 0
    assert (tmp_path / 'a.UNGAM').read_bytes() == raw
    assert main(['gam', 'pack', '-v', str(tmp_path / 'a.UNGAM'), str(tmp_path / 'b.GAM')]) == 0
    assert (tmp_path / 'b.GAM').read_bytes() == build_gam(raw)


def test_errors_go_to_stderr(tmp_path, capsys):
    (tmp_path / 'bad.GAM').write_bytes(b'NOPE' + bytes(8))
    assert main(['gam', 'unpack', str(tmp_path / 'bad.GAM'), str(tmp_path / 'out')]) == 1
    err = capsys.readouterr().err
    assert err.startswith('ERROR: Bad GAM magic')

    assert main(['wfm', 'decode', str(tmp_path / 'missing.WFM'), str(tmp_path / 'out')]) == 1
    assert 'ERROR:' in capsys.readouterr().err


def test_fla_recalc(tmp_path, capsys):
    original, modified = write_pair(tmp_path)
    saved = tmp_path / 'fla_table.bin'
    assert main(['fla', 'recalc', '-s', str(saved), original, modified]) == 0

    out = capsys.readouterr().out
    assert 'ID   | FLA MSF' in out
    assert '0001 | 00:05:18' in out
    assert '+512' in out
    assert 'B.DAT' in out
    assert 'Verification successful' in out

    table, _ = FLAProcessor().analyze_image(modified)
    assert saved.read_bytes() == table.pack()


def test_fla_recalc_without_changes(tmp_path, capsys):
    original, _ = write_pair(tmp_path)
    assert main(['fla', 'recalc', original, original]) == 0
    assert 'No file size changes' in capsys.readouterr().out
