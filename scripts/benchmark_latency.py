import sys
import os
import time
import numpy as np
import pandas as pd

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from handteleop.core.config_loader import load_and_validate_config, build_controller_config
from handteleop.core.filters import Goal
from handteleop.core.hand_frame import HandFrame, Handedness
from handteleop.core.hand_retargeting import HandShapeRetargeter
from handteleop.core.retargeting import CCDIKSolver
from handteleop.core.teleop_controller import TeleopController

TICK_BUDGET_MS = 11.0   # one frame at 90 Hz
N_TICKS = 900


def synthetic_hand(handedness, wrist, curl):
    """Open-to-closed hand: fingers along +x, curled toward -z by ``curl`` (0..1)."""
    bend = curl * np.pi / 2
    positions = {'wrist': wrist}

    d = np.array([np.cos(1.3), np.sin(1.3) * handedness.mirror_sign, 0.0])
    t_meta = wrist + np.array([0.02, 0.03 * handedness.mirror_sign, 0.0])
    positions['thumb-metacarpal'] = t_meta
    positions['thumb-phalanx-proximal'] = t_meta + 0.04 * d
    positions['thumb-phalanx-distal'] = t_meta + 0.07 * d
    positions['thumb-tip'] = t_meta + 0.095 * d

    for finger, y in (('index', 0.02), ('middle', 0.0)):
        lateral = y * handedness.mirror_sign
        meta = wrist + np.array([0.02, lateral, 0.0])
        prox = meta + np.array([0.07, 0.0, 0.0])
        seg1 = np.array([np.cos(bend), 0.0, -np.sin(bend)])
        seg2 = np.array([np.cos(2 * bend), 0.0, -np.sin(2 * bend)])
        inter = prox + 0.04 * seg1
        dist = inter + 0.025 * seg2
        tip = dist + 0.02 * seg2
        for name, p in zip(('metacarpal', 'phalanx-proximal', 'phalanx-intermediate',
                            'phalanx-distal', 'tip'), (meta, prox, inter, dist, tip)):
            positions[f'{finger}-finger-{name}'] = p
    return HandFrame.from_positions(handedness, positions)


def summarize(name, samples_ms):
    samples = np.asarray(samples_ms)
    row = {
        "Stage": name,
        "Mean (ms)": samples.mean(),
        "P50 (ms)": np.percentile(samples, 50),
        "P95 (ms)": np.percentile(samples, 95),
        "P99 (ms)": np.percentile(samples, 99),
        "Max (ms)": samples.max(),
        "Over Budget": int(np.sum(samples > TICK_BUDGET_MS)),
    }
    print(f"{name:<22} mean {row['Mean (ms)']:6.3f} ms | p95 {row['P95 (ms)']:6.3f} ms | "
          f"p99 {row['P99 (ms)']:6.3f} ms | max {row['Max (ms)']:6.3f} ms")
    return row


def benchmark_teleop(config_path="config/teleop.yaml"):
    print("=" * 60)
    print("TELEOP TICK LATENCY BENCHMARK")
    print("=" * 60)

    app_config = load_and_validate_config(config_path)
    controller = TeleopController(build_controller_config(app_config))
    print(f"Ticks: {N_TICKS} | Budget: {TICK_BUDGET_MS:.1f} ms | "
          f"IK iterations: {app_config.ik.max_iterations}")

    roots = {side: p.chain.root_position() for side, p in controller.pipelines.items()}

    def wrist_at(side, t):
        # Slow figure-eight in front of each shoulder
        s = side.mirror_sign
        return roots[side] + np.array([
            0.25 + 0.08 * np.sin(2 * np.pi * 0.5 * t),
            s * (0.05 + 0.06 * np.sin(2 * np.pi * 0.25 * t)),
            -0.20 + 0.06 * np.sin(2 * np.pi * 1.0 * t),
        ])

    results = []
    dt = 1.0 / app_config.system.control_rate_hz

    # 1. Full tick, both hands
    tick_ms = []
    for k in range(N_TICKS):
        t = k * dt
        curl = 0.5 + 0.5 * np.sin(2 * np.pi * 0.3 * t)
        # Drop the left hand for a short stretch to exercise re-acquisition
        left = None if 300 <= k < 320 else synthetic_hand(Handedness.LEFT, wrist_at(Handedness.LEFT, t), curl)
        right = synthetic_hand(Handedness.RIGHT, wrist_at(Handedness.RIGHT, t), curl)

        start = time.perf_counter()
        controller.tick(left=left, right=right, dt=dt)
        tick_ms.append((time.perf_counter() - start) * 1000)
    results.append(summarize("Full tick (2 hands)", tick_ms))

    # 2. IK solve alone
    solver = CCDIKSolver(controller.config.ik)
    chain = controller.pipelines[Handedness.LEFT].chain.copy()
    ik_ms = []
    for k in range(N_TICKS):
        goal = Goal(position=wrist_at(Handedness.LEFT, k * dt))
        start = time.perf_counter()
        solver.solve(chain, goal)
        ik_ms.append((time.perf_counter() - start) * 1000)
    results.append(summarize("CCD solve (1 arm)", ik_ms))

    # 3. Hand-shape retargeting alone
    retargeter = HandShapeRetargeter(controller.config.retarget)
    frames = [synthetic_hand(Handedness.LEFT, np.zeros(3), c) for c in np.linspace(0.0, 1.0, 50)]
    shape_ms = []
    for k in range(N_TICKS):
        start = time.perf_counter()
        retargeter.retarget(frames[k % len(frames)])
        shape_ms.append((time.perf_counter() - start) * 1000)
    results.append(summarize("Hand retarget (1 hand)", shape_ms))

    print("\n" + "-" * 60)
    p99 = results[0]["P99 (ms)"]
    verdict = "WITHIN" if p99 <= TICK_BUDGET_MS else "OVER"
    print(f"Full tick p99 {p99:.3f} ms is {verdict} the {TICK_BUDGET_MS:.1f} ms budget")
    print(f"Controller stats: {controller.statistics}")

    # Save results
    df = pd.DataFrame(results)
    df.to_csv("teleop_latency_results.csv", index=False)
    print("\nResults saved to teleop_latency_results.csv")


if __name__ == "__main__":
    benchmark_teleop(*sys.argv[1:2])
