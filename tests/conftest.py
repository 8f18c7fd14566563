import pytest

from gpu_select.config import GpuSelectConfig


# ---------------------------------------------------------------------------
# sinfo node text
# ---------------------------------------------------------------------------

# Columns: NodeList StateCompact CPUsState Memory AllocMem Gres GresUsed
ALLOC_SCAN = "\n".join([
    "node01  idle   20/15/5/20   500000  100000  gpu:h100:4(S:0-1)          gpu:h100:1(IDX:0)",
    "node02  mix    32/32/0/64   1000000 200000  "
    "gpu:nvidia_h100_80gb_hbm3_1g.10gb:2,gpu:nvidia_h100_80gb_hbm3_3g.40gb:1  "
    "gpu:nvidia_h100_80gb_hbm3_1g.10gb:0,gpu:nvidia_h100_80gb_hbm3_3g.40gb:1",
    "node03  drain* 0/64/0/64    500000  0       gpu:a100:8                 gpu:a100:0",
    "node04  alloc  64/0/0/64    500000  400000  gpu:a100:8                 gpu:a100:8",
    "node05  idle   0/48/0/48    16000   0       gpu:v100:2                 gpu:v100:0",
    "node06  idle   0/48/0/48    256000  0       (null)                     (null)",
    "node01  idle   20/15/5/20   500000  100000  gpu:h100:4                 gpu:h100:0",
]) + "\n"

# Same cluster without the AllocMem column
TOTAL_SCAN = "\n".join([
    "node01  idle   20/15/5/20   500000  gpu:h100:4(S:0-1)  gpu:h100:1(IDX:0)",
    "node03  drain* 0/64/0/64    500000  gpu:a100:8         gpu:a100:0",
]) + "\n"

PARTITIONS = "\n".join([
    "PartitionName=short AllowGroups=ALL Default=YES MaxTime=04:00:00 State=UP",
    "PartitionName=long AllowGroups=ALL MaxTime=7-00:00:00 State=UP",
    "PartitionName=debug AllowGroups=ALL MaxTime=30:00 State=UP",
    "PartitionName=scavenge AllowGroups=ALL MaxTime=UNLIMITED State=UP",
]) + "\n"


@pytest.fixture
def alloc_scan():
    return ALLOC_SCAN


@pytest.fixture
def total_scan():
    return TOTAL_SCAN


@pytest.fixture
def partitions_text():
    return PARTITIONS


# ---------------------------------------------------------------------------
# Config and scripts
# ---------------------------------------------------------------------------

@pytest.fixture
def cfg(tmp_path):
    """Default thresholds with auditing into a temporary file."""
    return GpuSelectConfig(log_file=tmp_path / "audit.jsonl")


@pytest.fixture
def script_with_header(tmp_path):
    """Batch script preferring a100, then h100, then l40s."""
    script = tmp_path / "train.sbatch"
    script.write_text(
        "#!/bin/bash\n"
        "#SBATCH --job-name=train\n"
        "#SELECTGPU a100, h100 ,l40s\n"
        "#SELECTGPU v100\n"
        "python train.py\n"
    )
    return script


@pytest.fixture
def script_without_header(tmp_path):
    script = tmp_path / "plain.sbatch"
    script.write_text(
        "#!/bin/bash\n"
        "#SBATCH --gres=gpu:1\n"
        "python train.py\n"
    )
    return script
