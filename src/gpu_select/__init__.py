"""gpu_select — find free Slurm GPU types and pick one at submission time.

Parses ``sinfo`` node status into per-node records, keeps only healthy nodes
with enough idle CPUs and memory, and reports which GPU types (including MIG
profiles) have free slots.  A batch script can list preferred types in a
``#SELECTGPU`` header; the first free one is requested, or the first
preference when none is free.

Typical usage::

    from gpu_select.config import GpuSelectConfig
    from gpu_select.resolver import find_available
    from gpu_select.selection import read_preferences, select_gpu
    from gpu_select.submit import submit_job

    cfg       = GpuSelectConfig.from_yaml("~/.config/gpu_select.yaml")
    report    = find_available(config=cfg)
    prefs     = read_preferences("train.sbatch")
    selection = select_gpu(prefs, report.available_types())
    job_id    = submit_job("train.sbatch", ["--time=2:00:00"], selection)
"""

__version__ = "0.1.0"
