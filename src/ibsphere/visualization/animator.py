"""
Visualization for Immersed Sphere Coupling.

Creates summary figures and GIF animations of the velocity-magnitude slice
through the bodies, with a dark theme.
"""

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.colors import LinearSegmentedColormap
from matplotlib.patches import Circle
from pathlib import Path
from typing import Dict, Any, Optional
import io

from PIL import Image
from tqdm import tqdm


class Animator:
    """Create summary plots and animations for immersed sphere runs."""

    COLOR_BG = '#0A1628'
    COLOR_BG_LIGHTER = '#0F1D32'
    COLOR_BG_PANEL = '#152238'
    COLOR_DEEP = '#0A2463'
    COLOR_MID = '#1E5288'
    COLOR_LIGHT = '#3E92CC'
    COLOR_ACCENT_CYAN = '#00F5FF'
    COLOR_ACCENT_CORAL = '#FF6B6B'
    COLOR_ACCENT_GOLD = '#FFD93D'
    COLOR_ACCENT_GREEN = '#6BCB77'
    COLOR_GRID = '#1A3A5C'
    COLOR_TEXT = '#C8D4E3'
    COLOR_TITLE = '#FFFFFF'

    AXIS_COLORS = ('#FF6B6B', '#FFD93D', '#6BCB77')

    def __init__(self, fps: int = 15, dpi: int = 150):
        """
        Initialize animator.

        Args:
            fps: Frames per second for animations
            dpi: Resolution for output images
        """
        self.fps = fps
        self.dpi = dpi
        self._setup_style()

    def _setup_style(self):
        """Setup matplotlib dark theme."""
        plt.style.use('dark_background')
        plt.rcParams.update({
            'figure.facecolor': self.COLOR_BG,
            'axes.facecolor': self.COLOR_BG_LIGHTER,
            'axes.edgecolor': self.COLOR_GRID,
            'axes.labelcolor': self.COLOR_TEXT,
            'axes.titlecolor': self.COLOR_TITLE,
            'xtick.color': self.COLOR_TEXT,
            'ytick.color': self.COLOR_TEXT,
            'text.color': self.COLOR_TEXT,
            'grid.color': self.COLOR_GRID,
            'grid.alpha': 0.3,
            'legend.facecolor': self.COLOR_BG_PANEL,
            'legend.edgecolor': self.COLOR_GRID,
            'font.family': 'sans-serif',
            'font.size': 11,
            'axes.labelsize': 12,
            'axes.titlesize': 14,
            'mathtext.fontset': 'cm',
        })

    def _create_speed_cmap(self) -> LinearSegmentedColormap:
        """Colormap for velocity magnitude."""
        colors = [
            self.COLOR_BG,
            self.COLOR_DEEP,
            self.COLOR_MID,
            self.COLOR_LIGHT,
            self.COLOR_ACCENT_CYAN,
            '#FFFFFF'
        ]
        return LinearSegmentedColormap.from_list('speed', colors, N=256)

    def _speed_limits(self, result: 'SimulationResult'):
        vmax = float(result.speed_slices.max())
        if vmax <= 0.0:
            vmax = 1.0
        return 0.0, vmax

    def _draw_slice(self, ax, result: 'SimulationResult', idx: int, cmap, vmin, vmax):
        """Speed slice at output idx with body outlines on that plane."""
        field = result.final_field
        x = field.cell_centers(0)
        y = field.cell_centers(1)
        z_slice = field.cell_centers(2)[result.slice_index]

        im = ax.pcolormesh(
            x, y, result.speed_slices[idx].T,
            cmap=cmap, vmin=vmin, vmax=vmax, shading='auto'
        )

        radius = result.system.radius
        for c in result.centers[idx]:
            dz = abs(c[2] - z_slice)
            if dz < radius:
                r = np.sqrt(radius**2 - dz**2)
                ax.add_patch(Circle(
                    (c[0], c[1]), r, fill=False,
                    edgecolor=self.COLOR_ACCENT_CORAL, linewidth=1.5
                ))

        ax.set_xlim(x[0], x[-1])
        ax.set_ylim(y[0], y[-1])
        ax.set_xlabel('$x$', fontweight='bold')
        ax.set_ylabel('$y$', fontweight='bold')
        ax.set_aspect('equal')
        return im

    def create_static_plot(
        self,
        result: 'SimulationResult',
        filepath: str,
        diagnostics: Optional[Dict[str, Any]] = None
    ):
        """
        Create summary visualization.

        Layout: 2×3 panels
        - Row 1: Initial speed slice, Final speed slice, Body trajectories
        - Row 2: Body velocity, Diagnostics, No-slip residual

        Args:
            result: SimulationResult from solver
            filepath: Output file path
            diagnostics: Optional diagnostics dictionary
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        system = result.system
        u_inf = system.far_field_velocity

        fig = plt.figure(figsize=(18, 12), facecolor=self.COLOR_BG)
        fig.suptitle(
            f'{system.name}\n'
            f'$R$ = {system.radius:.3g}, $\\rho_b/\\rho_f$ = {system.density_ratio:.3g}, '
            f'$|U_\\infty|$ = {np.linalg.norm(u_inf):.3g}',
            fontsize=16, fontweight='bold', color=self.COLOR_TITLE, y=0.98
        )

        cmap = self._create_speed_cmap()
        vmin, vmax = self._speed_limits(result)

        # ====== Panel 1: Initial slice ======
        ax1 = fig.add_subplot(231, facecolor=self.COLOR_BG_LIGHTER)
        im1 = self._draw_slice(ax1, result, 0, cmap, vmin, vmax)
        ax1.set_title('Initial ($t$ = 0)', fontweight='bold')
        cbar1 = plt.colorbar(im1, ax=ax1, pad=0.02)
        cbar1.set_label('$|\\mathbf{u}|$')

        # ====== Panel 2: Final slice ======
        ax2 = fig.add_subplot(232, facecolor=self.COLOR_BG_LIGHTER)
        im2 = self._draw_slice(ax2, result, -1, cmap, vmin, vmax)
        ax2.set_title(f'Final ($t$ = {result.time[-1]:.3g})', fontweight='bold')
        cbar2 = plt.colorbar(im2, ax=ax2, pad=0.02)
        cbar2.set_label('$|\\mathbf{u}|$')

        # ====== Panel 3: Trajectories ======
        ax3 = fig.add_subplot(233, facecolor=self.COLOR_BG_LIGHTER)
        for b in range(result.centers.shape[1]):
            disp = result.centers[:, b, :] - result.centers[0, b, :]
            ax3.plot(result.time, np.linalg.norm(disp, axis=1), lw=2, label=f'body {b}')
        ax3.set_xlabel('Time', fontweight='bold')
        ax3.set_ylabel('$|\\mathbf{c}(t) - \\mathbf{c}(0)|$', fontweight='bold')
        ax3.set_title('Displacement', fontweight='bold')
        ax3.grid(True, alpha=0.3)
        ax3.legend(loc='upper left', fontsize=9)

        # ====== Panel 4: Body velocity ======
        ax4 = fig.add_subplot(234, facecolor=self.COLOR_BG_LIGHTER)
        for axis, label in enumerate('uvw'):
            ax4.plot(
                result.time, result.velocities[:, 0, axis],
                color=self.AXIS_COLORS[axis], lw=2, label=f'${label}$'
            )
            ax4.axhline(u_inf[axis], color=self.AXIS_COLORS[axis], lw=0.8, ls='--', alpha=0.6)
        ax4.set_xlabel('Time', fontweight='bold')
        ax4.set_ylabel('Velocity (body 0)', fontweight='bold')
        ax4.set_title('Body Velocity', fontweight='bold')
        ax4.grid(True, alpha=0.3)
        ax4.legend(loc='best', fontsize=9)

        # ====== Panel 5: Diagnostics ======
        ax5 = fig.add_subplot(235, facecolor=self.COLOR_BG_LIGHTER)
        ax5.axis('off')

        diag = diagnostics if diagnostics else result.diagnostics
        cfg = result.config

        info_lines = []
        info_lines.append("SIMULATION PARAMETERS")
        info_lines.append("─" * 35)
        info_lines.append(f"Grid: {cfg.get('nx')} × {cfg.get('ny')} × {cfg.get('nz')}")
        info_lines.append(f"dx = {cfg.get('dx')}, dt = {cfg.get('dt')}")
        info_lines.append(f"Kernel: {cfg.get('kernel')}")
        info_lines.append(f"Sub-iterations: {cfg.get('sub_iterations')}")
        info_lines.append(f"Bodies: {system.n_bodies}")
        info_lines.append("")
        info_lines.append("COUPLING DIAGNOSTICS")
        info_lines.append("─" * 35)

        if diag:
            info_lines.append(f"Max slip: {diag.get('slip_max', 0):.2e}")
            info_lines.append(f"Kernel sum: {diag.get('kernel_normalization', 0):.6f}")
            info_lines.append(f"Markers: {diag.get('n_markers', 0)}")
            info_lines.append(f"Hull volume ratio: {diag.get('hull_volume_ratio', 0):.4f}")
            info_lines.append(f"Volume error: {diag.get('solid_volume_error_relative', 0):.2e}")
            info_lines.append(f"Displacement: {diag.get('max_displacement_normalized', 0):.4f} R")

        ax5.text(
            0.1, 0.95, "\n".join(info_lines),
            transform=ax5.transAxes,
            fontsize=11, fontfamily='monospace',
            color=self.COLOR_TEXT,
            verticalalignment='top',
            bbox=dict(
                boxstyle='round,pad=0.5',
                facecolor=self.COLOR_BG_PANEL,
                edgecolor=self.COLOR_GRID,
                alpha=0.9
            )
        )

        # ====== Panel 6: Slip residual ======
        ax6 = fig.add_subplot(236, facecolor=self.COLOR_BG_LIGHTER)
        slip = np.maximum(result.slip_max, 1e-16)
        ax6.semilogy(result.time, slip, color=self.COLOR_ACCENT_CYAN, lw=2)
        ax6.set_xlabel('Time', fontweight='bold')
        ax6.set_ylabel('max $|U_b - U_k|$', fontweight='bold')
        ax6.set_title('No-Slip Residual', fontweight='bold')
        ax6.grid(True, alpha=0.3)

        plt.tight_layout(rect=[0, 0, 1, 0.95])

        plt.savefig(
            filepath, dpi=self.dpi,
            facecolor=self.COLOR_BG, edgecolor='none',
            bbox_inches='tight'
        )
        plt.close(fig)

    def create_animation(
        self,
        result: 'SimulationResult',
        filepath: str,
        n_frames: Optional[int] = None,
        duration_seconds: float = 10.0,
        verbose: bool = True
    ):
        """
        Create animated GIF of the velocity-magnitude slice.

        Args:
            result: SimulationResult from solver
            filepath: Output file path
            n_frames: Number of frames (None = use all outputs)
            duration_seconds: Target duration in seconds
            verbose: Print progress
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        system = result.system
        n_outputs = len(result.time)
        if n_frames is None or n_frames > n_outputs:
            n_frames = n_outputs

        frame_indices = np.linspace(0, n_outputs - 1, n_frames, dtype=int)

        cmap = self._create_speed_cmap()
        vmin, vmax = self._speed_limits(result)

        frames = []

        if verbose:
            print(f"      Generating {n_frames} frames...")

        for idx in tqdm(frame_indices, desc="      Rendering", ncols=70, disable=not verbose):
            fig = plt.figure(figsize=(9, 8), facecolor=self.COLOR_BG, dpi=100)
            ax = fig.add_subplot(111, facecolor=self.COLOR_BG_LIGHTER)

            im = self._draw_slice(ax, result, idx, cmap, vmin, vmax)
            ax.set_title(
                f'{system.name}\n$t$ = {result.time[idx]:.3g}',
                fontsize=14, fontweight='bold', color=self.COLOR_TITLE
            )

            cbar = plt.colorbar(im, ax=ax, pad=0.02, shrink=0.8)
            cbar.set_label('$|\\mathbf{u}|$')

            v = result.velocities[idx, 0]
            info = f'$U_b$ = ({v[0]:.3f}, {v[1]:.3f}, {v[2]:.3f})'
            ax.text(
                0.02, 0.98, info,
                transform=ax.transAxes,
                fontsize=9, fontfamily='monospace',
                color=self.COLOR_TEXT,
                verticalalignment='top',
                bbox=dict(
                    boxstyle='round,pad=0.3',
                    facecolor=self.COLOR_BG_PANEL,
                    edgecolor=self.COLOR_GRID,
                    alpha=0.8
                )
            )

            fig.tight_layout()

            buf = io.BytesIO()
            fig.savefig(buf, format='png', dpi=100,
                        facecolor=self.COLOR_BG, edgecolor='none')
            buf.seek(0)
            frames.append(Image.open(buf).copy())
            buf.close()
            plt.close(fig)

        frame_duration_ms = max(1, int(duration_seconds * 1000 / n_frames))

        if verbose:
            print(f"      Saving GIF ({n_frames} frames)...")

        frames[0].save(
            str(filepath),
            save_all=True,
            append_images=frames[1:],
            duration=frame_duration_ms,
            loop=0,
            optimize=True
        )

        if verbose:
            print(f"      ✓ Saved: {filepath.name}")
