import csv
import os
import subprocess
import sys
import time

import numpy as np

from .config import StrassenConfig
from .matrix import create
from .parallel import ParallelEngine
from .sequential import SequentialEngine

MPI_CMD = os.environ.get('MPI_CMD', 'mpiexec')
MODES = ['sequential', 'parallel', 'distributed']
DEFAULT_PROCESSES = 8
START_SIZE = 500
SIZE_STEP = 500
REPEATS = 3
MAX_AVERAGE_SECONDS = 600.0
RESULTS_DIR = 'results'

CSV_NAMES = {
    'sequential': 'seq_results.csv',
    'parallel': 'par_results.csv',
    'distributed': 'dist_results.csv',
    'all': 'all_results.csv',
}


def parse_execution_time(output):
    """Seconds from the first 'Execution time: <t> seconds' line, or None."""
    for line in output.split('\n'):
        if 'Execution time:' in line:
            try:
                return float(line.split(':')[1].strip().split()[0])
            except (IndexError, ValueError):
                print(f"  Failed to parse distributed time from: {line.strip()}", file=sys.stderr)
                return None
    return None


def run_distributed_experiment(P, N, timeout=None):
    print(f"  Running distributed: P={P}, N={N}...", end=" ")

    try:
        result = subprocess.run(
            [MPI_CMD, '-np', str(P), sys.executable, '-m', 'strassen.distributed', str(N)],
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except subprocess.TimeoutExpired:
        print(f"X Timeout ({timeout}s exceeded)")
        return None
    except OSError as e:
        print(f"X Could not launch {MPI_CMD}: {e}")
        return None

    if result.returncode != 0:
        print(f"X MPI process exited with code {result.returncode}: {result.stderr[:100]}")
        return None

    time_val = parse_execution_time(result.stdout)
    if time_val is None:
        print("X (time not found)")
        return None
    print(f"Time: {time_val:.6f}s")
    return time_val


def time_in_process(engine, A, B):
    start = time.perf_counter()
    engine.multiply(A, B)
    return time.perf_counter() - start


def average_runs(run_once, repeats=REPEATS):
    """Mean of ``repeats`` timings; None if any run failed."""
    times = []
    for i in range(repeats):
        t = run_once()
        if t is None:
            return None
        print(f"    Run {i + 1} took {t * 1000:.0f} ms")
        times.append(t)
    return sum(times) / len(times)


def append_row(path, row):
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    with open(path, 'a', newline='') as f:
        csv.writer(f).writerow(row)


def collect_timing_data(modes, processes=DEFAULT_PROCESSES, start_size=START_SIZE,
                        step=SIZE_STEP, max_average=MAX_AVERAGE_SECONDS,
                        results_dir=RESULTS_DIR, config=None, max_size=None):
    config = config or StrassenConfig.from_env()
    csv_key = modes[0] if len(modes) == 1 else 'all'
    csv_path = os.path.join(results_dir, CSV_NAMES[csv_key])
    results = {mode: {} for mode in modes}
    rng = np.random.default_rng()

    sequential = SequentialEngine(config=config)
    with ParallelEngine(sequential=sequential, config=config) as parallel:
        size = start_size
        while max_size is None or size <= max_size:
            A = create(size, rng)
            B = create(size, rng)
            should_stop = False
            row = [size]

            for mode in modes:
                print(f"Testing size: {size} ({mode})")
                if mode == 'sequential':
                    avg = average_runs(lambda: time_in_process(sequential, A, B))
                elif mode == 'parallel':
                    avg = average_runs(lambda: time_in_process(parallel, A, B))
                else:
                    print(f"  Number of processes: {processes}")
                    avg = average_runs(lambda: run_distributed_experiment(
                        processes, size, timeout=max_average * 2))

                if avg is None:
                    print(f"  Stopping test: {mode} run failed at size {size}.")
                    should_stop = True
                    break

                print(f"  Average time for size {size}: {avg * 1000:.0f} ms")
                results[mode][size] = avg
                row.append(f"{avg:.6f}")

                if avg > max_average:
                    print(f"  Stopping test: {mode} version exceeded {max_average:.0f}s limit.")
                    should_stop = True
                    break

            if should_stop:
                break

            append_row(csv_path, row)
            print(f"  Saved result to: {csv_path}")
            size += step

    return results


def plot_times(results, path):
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(8, 5))
    markers = {'sequential': 'o-', 'parallel': 's-', 'distributed': '^-'}
    for mode, times in results.items():
        if not times:
            continue
        sizes = sorted(times)
        ax.plot(sizes, [times[n] for n in sizes], markers.get(mode, 'o-'),
                label=mode.capitalize(), linewidth=2, markersize=6)

    ax.set_xlabel('Matrix size N', fontsize=11)
    ax.set_ylabel('Average time (seconds)', fontsize=11)
    ax.set_title("Strassen's Algorithm: execution time by strategy", fontsize=12, fontweight='bold')
    ax.legend(loc='best')
    ax.grid(True, alpha=0.3)
    ax.set_yscale('log')
    plt.tight_layout()
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    plt.savefig(path, dpi=300, bbox_inches='tight')
    plt.close(fig)
    print(f"  Saved: {path}")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    if len(argv) < 1 or len(argv) > 2:
        print("Usage: python -m strassen.benchmark <mode> [num_processes]")
        print("Modes: sequential, parallel, distributed, all")
        print(f"For 'distributed' or 'all', optionally give the number of processes (default = {DEFAULT_PROCESSES})")
        return 2

    mode = argv[0].lower()
    if mode == 'all':
        modes = list(MODES)
    elif mode in MODES:
        modes = [mode]
    else:
        print(f"Invalid mode: {mode}")
        return 2

    processes = DEFAULT_PROCESSES
    if mode in ('distributed', 'all') and len(argv) == 2:
        try:
            processes = int(argv[1])
        except ValueError:
            print("Invalid number of processes. Must be an integer.", file=sys.stderr)
            return 2

    print("=" * 80)
    print("STRASSEN COMPARISON")
    print("=" * 80)
    print(f"Using MPI launcher: {MPI_CMD}")

    results = collect_timing_data(modes, processes=processes)
    plot_times(results, os.path.join(RESULTS_DIR, f'{mode}_times.png'))
    return 0


if __name__ == "__main__":
    sys.exit(main())
