import matplotlib.pyplot as plt
import matplotlib.animation as animation
import numpy as np


def road_boundaries(center, width):
    road_left, road_right = [], []
    for i in range(len(center)):
        if i < len(center) - 1:
            tangent = center[i+1] - center[i]
        else:
            tangent = center[i] - center[i-1]

        tangent = tangent / np.linalg.norm(tangent)
        normal = np.array([-tangent[1], tangent[0]])

        road_left.append(center[i] + normal * width/2)
        road_right.append(center[i] - normal * width/2)

    return np.array(road_left), np.array(road_right)


def _draw_road(ax, center, width):
    road_left, road_right = road_boundaries(center, width)
    ax.plot(road_left[:, 0], road_left[:, 1], 'k-', linewidth=2, alpha=0.5)
    ax.plot(road_right[:, 0], road_right[:, 1], 'k-', linewidth=2, alpha=0.5)
    ax.plot(center[:, 0], center[:, 1], 'k--', alpha=0.3, linewidth=1, label='Centerline')


def plot(states, refs, center=None, width=None, prediction_horizons=None, cte=None,
         save_path="mpc_trajectory.png"):
    """
    Static summary of a closed-loop run

    Args:
        states: Simulator poses [X, Y, psi, v]
        refs: Centerline point nearest to each pose
        center: Road centerline points
        width: Road width
        prediction_horizons: Global-frame MPC predictions per cycle
        cte: Predicted cross-track error per cycle
        save_path: Path of the PNG file
    """
    s = np.array(states)
    r = np.array(refs)

    fig, (ax, ax_err) = plt.subplots(2, 1, figsize=(14, 12), gridspec_kw={'height_ratios': [3, 1]})

    if center is not None and width is not None:
        _draw_road(ax, center, width)

    if len(r) > 0:
        ax.plot(r[:, 0], r[:, 1], 'g--', linewidth=2, alpha=0.8, label='Reference')

    if len(s) > 1:
        ax.plot(s[:, 0], s[:, 1], 'b-', linewidth=2.5, alpha=0.9, label='Actual Trajectory')
        ax.plot(s[0, 0], s[0, 1], 'go', markersize=12, label='Start', markeredgecolor='darkgreen', markeredgewidth=2)
        ax.plot(s[-1, 0], s[-1, 1], 'ro', markersize=12, label='End', markeredgecolor='darkred', markeredgewidth=2)

    # Every 10th prediction to avoid clutter
    if prediction_horizons:
        interval = max(1, len(prediction_horizons) // 10)
        for i in range(0, len(prediction_horizons), interval):
            horizon = np.asarray(prediction_horizons[i])
            if len(horizon) > 0:
                ax.plot(horizon[:, 0], horizon[:, 1], 'r--', alpha=0.6, linewidth=1.5,
                        label='Prediction Horizon' if i == 0 else '')

    ax.set_xlabel('X [m]', fontsize=12, fontweight='bold')
    ax.set_ylabel('Y [m]', fontsize=12, fontweight='bold')
    ax.set_title('MPC Tracking with Latency Compensation', fontsize=14, fontweight='bold')
    ax.axis('equal')
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper right', fontsize=9)

    if cte is not None and len(cte) > 0:
        ax_err.plot(np.asarray(cte), 'm-', linewidth=1.5)
        ax_err.axhline(0.0, color='k', linewidth=0.8, alpha=0.5)
    ax_err.set_xlabel('Cycle', fontsize=12)
    ax_err.set_ylabel('CTE [m]', fontsize=12)
    ax_err.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    return save_path


def create_trajectory_gif(states, refs, center=None, width=None, prediction_horizons=None,
                          save_path="mpc_trajectory.gif", interval=50, fps=20):
    """Animated run with the prediction horizon of each frame."""
    s = np.array(states)
    r = np.array(refs)

    fig, ax = plt.subplots(figsize=(12, 8))

    def animate_frame(frame_idx):
        ax.clear()
        current_states = s[:frame_idx+1]

        if center is not None and width is not None:
            _draw_road(ax, center, width)

        if len(r) > 0:
            ax.plot(r[:, 0], r[:, 1], 'g--', linewidth=2, alpha=0.8, label='Reference')

        if len(current_states) > 1:
            ax.plot(current_states[:, 0], current_states[:, 1], 'b-', linewidth=2.5, alpha=0.9,
                    label='Actual Trajectory')

            current_x, current_y, current_psi = current_states[-1, :3]
            ax.plot(current_x, current_y, 'ro', markersize=8, label='Current Position')
            arrow_length = 3.0
            ax.arrow(current_x, current_y, arrow_length*np.cos(current_psi), arrow_length*np.sin(current_psi),
                     head_width=0.8, head_length=0.6, fc='red', ec='red', alpha=0.7)

        if prediction_horizons is not None and frame_idx < len(prediction_horizons):
            horizon = np.asarray(prediction_horizons[frame_idx])
            if len(horizon) > 0:
                ax.plot(horizon[:, 0], horizon[:, 1], 'r--', linewidth=2, alpha=0.7, label='Prediction Horizon')

        ax.set_xlabel('X [m]', fontsize=12, fontweight='bold')
        ax.set_ylabel('Y [m]', fontsize=12, fontweight='bold')
        ax.set_title(f'MPC Trajectory Tracking - Frame {frame_idx+1}/{len(s)}', fontsize=14, fontweight='bold')
        ax.axis('equal')
        ax.grid(True, alpha=0.3)
        ax.legend(loc='upper right', fontsize=10)

        speed = current_states[-1, 3]
        ax.text(0.02, 0.98, f'Speed: {speed:.1f}', transform=ax.transAxes,
                bbox=dict(boxstyle='round', facecolor='lightblue', alpha=0.8),
                verticalalignment='top', fontsize=10, fontweight='bold')

    print(f"Creating animated GIF with {len(s)} frames...")
    anim = animation.FuncAnimation(fig, animate_frame, frames=len(s),
                                   interval=interval, repeat=True, blit=False)

    anim.save(save_path, writer='pillow', fps=fps, dpi=80)
    plt.close(fig)

    print(f"Animated GIF saved as {save_path}")
    return anim
