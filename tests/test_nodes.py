"""Tests for nodes.py — sinfo line parsing and eligibility checks."""
import pytest

from gpu_select.config import GpuSelectConfig
from gpu_select.nodes import (
    MemMode,
    NodeRecord,
    SkipReason,
    available_memory,
    check_node,
    parse_gres,
    parse_idle_cpus,
    parse_node_line,
)


def _record(**kwargs) -> NodeRecord:
    """Build an eligible NodeRecord, overriding fields from kwargs."""
    defaults = {
        "name": "node01",
        "state": "idle",
        "cpu_state": "0/32/0/32",
        "idle_cpus": 32,
        "total_memory_mb": 500000,
        "alloc_memory_mb": 0,
        "gres": "gpu:h100:4",
        "gres_total": {"h100": 4},
    }
    defaults.update(kwargs)
    return NodeRecord(**defaults)


# ---------------------------------------------------------------------------
# parse_gres
# ---------------------------------------------------------------------------


def test_parse_gres_single_type():
    assert parse_gres("gpu:h100:4") == {"h100": 4}


def test_parse_gres_ignores_socket_annotation():
    assert parse_gres("gpu:a100:8(S:0-1)") == {"a100": 8}


def test_parse_gres_multiple_mig_profiles():
    gres = "gpu:nvidia_h100_80gb_hbm3_1g.10gb:2,gpu:nvidia_h100_80gb_hbm3_3g.40gb:1"
    assert parse_gres(gres) == {
        "nvidia_h100_80gb_hbm3_1g.10gb": 2,
        "nvidia_h100_80gb_hbm3_3g.40gb": 1,
    }


def test_parse_gres_none_and_null():
    assert parse_gres(None) == {}
    assert parse_gres("(null)") == {}


def test_parse_gres_untyped_count_not_matched():
    assert parse_gres("gpu:4") == {}


def test_parse_gres_last_mention_wins_for_totals():
    assert parse_gres("gpu:a100:2(S:0),gpu:a100:3(S:1)") == {"a100": 3}


def test_parse_gres_accumulate_sums_duplicates():
    used = "gpu:a100:1(IDX:0),gpu:a100:2(IDX:1-2)"
    assert parse_gres(used, accumulate=True) == {"a100": 3}


# ---------------------------------------------------------------------------
# parse_idle_cpus
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("cpu_state, expected", [
    ("20/15/5/40", 15),
    ("0/0/0/0", 0),
    ("20/15/5", None),
    ("a/b/c/d", None),
    ("", None),
    (None, None),
])
def test_parse_idle_cpus(cpu_state, expected):
    assert parse_idle_cpus(cpu_state) == expected


# ---------------------------------------------------------------------------
# parse_node_line
# ---------------------------------------------------------------------------


def test_parse_node_line_alloc_mode():
    line = "node01 IDLE 20/15/5/20 500000 100000 gpu:h100:4 gpu:h100:1"
    record = parse_node_line(line, MemMode.ALLOC)
    assert record.name == "node01"
    assert record.state == "idle"
    assert record.idle_cpus == 15
    assert record.total_memory_mb == 500000
    assert record.alloc_memory_mb == 100000
    assert record.gres == "gpu:h100:4"
    assert record.gres_used == "gpu:h100:1"
    assert record.free_gpus() == {"h100": 3}


def test_parse_node_line_total_mode_ignores_field_four():
    line = "node01 idle 20/15/5/20 500000 100000 gpu:h100:4 gpu:h100:1"
    record = parse_node_line(line, MemMode.TOTAL)
    assert record.alloc_memory_mb is None


def test_parse_node_line_alloc_mode_without_alloc_column():
    """A total-only shaped line read in ALLOC mode has a gres string at field 4."""
    line = "node01 idle 20/15/5/20 500000 gpu:h100:4 gpu:h100:1"
    record = parse_node_line(line, MemMode.ALLOC)
    assert record.alloc_memory_mb is None
    assert record.gres == "gpu:h100:4"


def test_parse_node_line_too_few_fields():
    assert parse_node_line("node01 idle 20/15/5/20", MemMode.ALLOC) is None
    assert parse_node_line("", MemMode.ALLOC) is None


def test_parse_node_line_no_used_column():
    record = parse_node_line("node01 idle 0/32/0/32 500000 0 gpu:h100:4", MemMode.ALLOC)
    assert record.gres == "gpu:h100:4"
    assert record.gres_used is None
    assert record.free_gpus() == {"h100": 4}


def test_parse_node_line_identical_used_column_treated_as_absent():
    record = parse_node_line(
        "node01 idle 0/32/0/32 500000 0 gpu:h100:4 gpu:h100:4", MemMode.ALLOC
    )
    assert record.gres_used is None
    assert record.free_gpus() == {"h100": 4}


def test_parse_node_line_null_gres():
    record = parse_node_line("node06 idle 0/48/0/48 256000 0 (null) (null)", MemMode.ALLOC)
    assert record.gres is None
    assert record.gres_total == {}


def test_parse_node_line_unparsable_memory():
    record = parse_node_line("node01 idle 0/32/0/32 lots 0 gpu:h100:4", MemMode.ALLOC)
    assert record.total_memory_mb is None


def test_free_gpus_can_be_negative():
    record = _record(gres_total={"a100": 2}, gres_used_counts={"a100": 3})
    assert record.free_gpus() == {"a100": -1}


# ---------------------------------------------------------------------------
# available_memory
# ---------------------------------------------------------------------------


def test_available_memory_alloc_mode_subtracts():
    assert available_memory(_record(alloc_memory_mb=100000), MemMode.ALLOC) == 400000


def test_available_memory_alloc_mode_missing_alloc_uses_total():
    assert available_memory(_record(alloc_memory_mb=None), MemMode.ALLOC) == 500000


def test_available_memory_total_mode_uses_total():
    assert available_memory(_record(alloc_memory_mb=400000), MemMode.TOTAL) == 500000


def test_available_memory_unknown_total():
    assert available_memory(_record(total_memory_mb=None), MemMode.ALLOC) is None


# ---------------------------------------------------------------------------
# check_node
# ---------------------------------------------------------------------------


def test_check_node_eligible():
    assert check_node(_record(), MemMode.ALLOC) is None


@pytest.mark.parametrize("state", [
    "drain", "drng", "down", "down*", "fail", "failg", "maint", "idle*", "drain*",
    "mix-drain", "idle+maint",
])
def test_check_node_bad_states(state):
    assert check_node(_record(state=state), MemMode.ALLOC) == SkipReason.BAD_STATE


@pytest.mark.parametrize("state", ["idle", "mix", "alloc", "mix-", "planned"])
def test_check_node_good_states(state):
    assert check_node(_record(state=state), MemMode.ALLOC) is None


def test_check_node_bad_state_checked_before_cpu():
    record = _record(state="drain*", idle_cpus=None)
    assert check_node(record, MemMode.ALLOC) == SkipReason.BAD_STATE


def test_check_node_low_idle_cpus():
    assert check_node(_record(idle_cpus=9), MemMode.ALLOC) == SkipReason.CPU


def test_check_node_idle_cpus_at_threshold():
    assert check_node(_record(idle_cpus=10), MemMode.ALLOC) is None


def test_check_node_unknown_idle_cpus():
    assert check_node(_record(idle_cpus=None), MemMode.ALLOC) == SkipReason.CPU


def test_check_node_low_memory_alloc_mode():
    record = _record(total_memory_mb=64000, alloc_memory_mb=40000)
    assert check_node(record, MemMode.ALLOC) == SkipReason.MEMORY


def test_check_node_same_memory_ok_in_total_mode():
    record = _record(total_memory_mb=64000, alloc_memory_mb=40000)
    assert check_node(record, MemMode.TOTAL) is None


def test_check_node_memory_at_threshold():
    assert check_node(_record(total_memory_mb=32768, alloc_memory_mb=0), MemMode.ALLOC) is None


def test_check_node_unknown_memory():
    assert check_node(_record(total_memory_mb=None), MemMode.ALLOC) == SkipReason.MEMORY


def test_check_node_no_gres():
    assert check_node(_record(gres=None, gres_total={}), MemMode.ALLOC) == SkipReason.NO_GRES


def test_check_node_custom_thresholds():
    cfg = GpuSelectConfig(min_idle_cpus=64, min_available_mem_mb=0, bad_states=["planned"])
    assert check_node(_record(idle_cpus=32), MemMode.ALLOC, cfg) == SkipReason.CPU
    assert check_node(_record(idle_cpus=64, state="planned"), MemMode.ALLOC, cfg) == SkipReason.BAD_STATE
    assert check_node(_record(idle_cpus=64, state="drain"), MemMode.ALLOC, cfg) is None
