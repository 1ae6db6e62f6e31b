import pathlib
import sys

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import oracle_autostart


ORATAB = """\
# This file is used by ORACLE utilities.
#
#   $ORACLE_SID:$ORACLE_HOME:<N|Y>:

DB1:/opt/oracle:Y
DB2:/opt/oracle:N

+ASM:/u01/app/grid:N           # grid home
DB3:/u01/app/oracle/product/19c:Y
*:/u01/app/oracle/product/21c:Y
broken-line-without-fields
DB4:/u01/app/oracle/product/19c:y
"""


def write_oratab(tmp_path, text=ORATAB):
    path = tmp_path / "oratab"
    path.write_text(text, encoding="utf-8")
    return path


def test_only_rows_flagged_y_are_managed(tmp_path):
    path = write_oratab(tmp_path, "DB1:/opt/oracle:Y\nDB2:/opt/oracle:N\n")
    assert oracle_autostart.list_managed_instances(path) == ["DB1"]


def test_managed_instances_keep_table_order_and_skip_comments(tmp_path):
    path = write_oratab(tmp_path)
    assert oracle_autostart.list_managed_instances(path) == ["DB1", "DB3"]


def test_read_oratab_returns_every_data_row(tmp_path):
    entries = oracle_autostart.read_oratab(write_oratab(tmp_path))

    assert [entry.sid for entry in entries] == ["DB1", "DB2", "+ASM", "DB3", "*", "DB4"]
    grid = entries[2]
    assert grid.oracle_home == pathlib.Path("/u01/app/grid")
    assert grid.autostart is False
    assert entries[4].autostart is True
    assert entries[4].is_managed is False


def test_flag_is_taken_from_last_field(tmp_path):
    path = write_oratab(tmp_path, "DB9:/opt/oracle:N:Y\nDB8:/opt/oracle:Y:N\n")
    assert oracle_autostart.list_managed_instances(path) == ["DB9"]


def test_missing_oratab_yields_empty_list(tmp_path, caplog):
    caplog.set_level("WARNING")
    assert oracle_autostart.list_managed_instances(tmp_path / "absent") == []
    assert any("does not exist" in record.message for record in caplog.records)


def test_empty_oratab_yields_empty_list(tmp_path):
    assert oracle_autostart.list_managed_instances(write_oratab(tmp_path, "")) == []


def test_resolve_oratab_prefers_solaris_location_when_default_missing(monkeypatch, tmp_path):
    linux = tmp_path / "etc" / "oratab"
    solaris = tmp_path / "var" / "opt" / "oracle" / "oratab"
    solaris.parent.mkdir(parents=True)
    solaris.write_text("DB1:/opt/oracle:Y\n", encoding="utf-8")
    monkeypatch.setattr(oracle_autostart, "DEFAULT_ORATAB", linux)
    monkeypatch.setattr(oracle_autostart, "SOLARIS_ORATAB", solaris)

    assert oracle_autostart.resolve_oratab_path(linux) == solaris
    assert oracle_autostart.resolve_oratab_path(tmp_path / "custom") == tmp_path / "custom"


LISTENER_ORA = """\
LISTENER_LOG_FILE=/x
LISTENER1 =
  (DESCRIPTION_LIST =
    (DESCRIPTION =
      (ADDRESS = (PROTOCOL = TCP)(HOST = db01)(PORT = 1521))
    )
  )
LISTENER=(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST=db01)(PORT=1522)))
"""


def test_listener_names_exclude_log_file_and_bare_keyword():
    assert oracle_autostart.parse_listener_names(LISTENER_ORA) == ["LISTENER1"]


def test_listener_names_are_uppercased_and_unique():
    text = (
        "listener_dg = (DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST=h)(PORT=1523)))\n"
        "# LISTENER_OLD = (DESCRIPTION=...)\n"
        "SID_LIST_LISTENER_DG = (SID_LIST=(SID_DESC=(SID_NAME=DB1)))\n"
        "ADR_BASE_LISTENER_DG = /u01/app/oracle\n"
        "Listener_Dg=(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST=h)(PORT=1523)))\n"
        "LISTENER_DG_TRACE_LEVEL = OFF\n"
        "  LISTENER_NESTED = (ADDRESS=...)\n"
        "LISTENER_APP=(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST=h)(PORT=1524)))\n"
    )
    assert oracle_autostart.parse_listener_names(text) == ["LISTENER_DG", "LISTENER_APP"]


def test_list_listener_names_reads_environment_listener_file(tmp_path):
    admin = tmp_path / "network" / "admin"
    admin.mkdir(parents=True)
    (admin / "listener.ora").write_text(LISTENER_ORA, encoding="utf-8")
    env = oracle_autostart.OracleEnvironment(
        sid="DB1",
        oracle_home=tmp_path,
        tns_admin=admin,
        library_path=str(tmp_path / "lib"),
    )

    assert oracle_autostart.list_listener_names(env) == ["LISTENER1"]


def test_list_listener_names_without_file_is_empty(tmp_path):
    env = oracle_autostart.OracleEnvironment(
        sid="DB1",
        oracle_home=tmp_path,
        tns_admin=tmp_path / "missing",
        library_path="",
    )
    assert oracle_autostart.list_listener_names(env) == []


def test_oratab_with_latin1_comment_is_still_read(tmp_path):
    path = tmp_path / "oratab"
    path.write_bytes(b"# ge\xe4ndert von root\nDB1:/opt/oracle:Y\nDB2:/opt/oracle:N\n")

    assert oracle_autostart.list_managed_instances(path) == ["DB1"]


def test_listener_file_with_latin1_comment_is_still_read(tmp_path):
    admin = tmp_path / "network" / "admin"
    admin.mkdir(parents=True)
    (admin / "listener.ora").write_bytes(
        b"# ge\xe4ndert\nLISTENER1=(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST=h)(PORT=1521)))\n"
    )
    env = oracle_autostart.OracleEnvironment(
        sid="DB1", oracle_home=tmp_path, tns_admin=admin, library_path=""
    )

    assert oracle_autostart.list_listener_names(env) == ["LISTENER1"]


def test_parameter_markers_only_exclude_trailing_keys():
    text = (
        "LISTENER_LOG_FILE_SRV=(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST=h)(PORT=1525)))\n"
        "LISTENER_SRV_LOG_FILE = /u01/app/oracle/diag/listener.log\n"
        "LISTENER_SRV_TRACE_LEVEL = OFF\n"
    )
    assert oracle_autostart.parse_listener_names(text) == ["LISTENER_LOG_FILE_SRV"]
