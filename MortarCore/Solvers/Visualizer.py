import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import meshio
import numpy as np
from matplotlib.collections import LineCollection, PolyCollection

from MortarCore.Objects.Geometry.Clipping import IntersectionPolygon
from MortarCore.Objects.Interface.Node import Side


@dataclass
class PlotStyle:
    """Configuration of interface plots."""
    # --- Interface outlines ---
    slave_color: str = '#1f77b4'
    master_color: str = '#d62728'
    outline_linewidth: float = 1.0
    master_linestyle: str = '--'

    # --- Clip polygons ---
    polygon_fill: str = '#a6cee3'
    polygon_alpha: float = 0.6
    cell_edge_color: str = '#555555'
    cell_linewidth: float = 0.4

    # --- Figure Layout ---
    figsize: Tuple[float, float] = (8, 6)
    dpi: int = 300
    label_fontsize: int = 12
    title_fontsize: int = 14
    grid: bool = True
    grid_alpha: float = 0.5

    def apply_to_axes(self, ax):
        if self.grid:
            ax.grid(True, alpha=self.grid_alpha, linestyle='--', linewidth=0.5)

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def scientific(cls):
        return cls(slave_color='black', master_color='gray', polygon_fill='lightgray',
                   polygon_alpha=1.0, figsize=(7, 5), grid=False)


class Visualizer:

    @staticmethod
    def _setup_figure(ax, figsize, style):
        if style is None:
            style = PlotStyle()
        if ax is None:
            fig, ax = plt.subplots(1, 1, figsize=figsize or style.figsize)
        else:
            fig = ax.figure
        style.apply_to_axes(ax)
        return fig, ax, style

    @staticmethod
    def _finalize_figure(fig, ax, style, title, save_path):
        ax.autoscale_view()  # Needed with collections
        ax.set_xlabel("x [m]", fontsize=style.label_fontsize)
        ax.set_ylabel("y [m]", fontsize=style.label_fontsize)
        if title:
            ax.set_title(title, fontsize=style.title_fontsize)
        ax.set_aspect('equal', adjustable='datalim')
        fig.tight_layout()
        if save_path:
            fig.savefig(save_path, dpi=style.dpi, bbox_inches='tight')
            print(f"Saved: {save_path}")

    @staticmethod
    def _outline_segments(interface, side: Side) -> List[np.ndarray]:
        segments = []
        for element in interface.elements.values():
            if element.side is not side:
                continue
            X = element.coordinates(interface.nodes)[:, :2]
            if len(X) == 2:
                segments.append(X)
            else:
                segments.append(np.vstack([X, X[:1]]))
        return segments

    @staticmethod
    def plot_polygons(interface, polygons: Optional[Sequence[IntersectionPolygon]] = None,
                      show_cells: bool = True, ax: Optional[plt.Axes] = None,
                      figsize=None, save_path: Optional[str] = None, title: Optional[str] = None,
                      style: Optional[PlotStyle] = None) -> plt.Figure:
        """
        Plot slave and master outlines with the clip polygons (x-y view).

        Parameters
        ----------
        interface : CouplingInterface
            Interface whose elements are drawn
        polygons : Sequence[IntersectionPolygon], optional
            Polygons to draw (default: those of the last evaluation)
        show_cells : bool
            Draw the integration cells of every polygon
        """
        fig, ax, style = Visualizer._setup_figure(ax, figsize, style)
        polygons = interface.polygons if polygons is None else polygons

        ax.add_collection(LineCollection(Visualizer._outline_segments(interface, Side.SLAVE),
                                         colors=style.slave_color,
                                         linewidths=style.outline_linewidth, label='slave'))
        ax.add_collection(LineCollection(Visualizer._outline_segments(interface, Side.MASTER),
                                         colors=style.master_color,
                                         linewidths=style.outline_linewidth,
                                         linestyles=style.master_linestyle, label='master'))

        surfaces = [p.points[:, :2] for p in polygons if p.n_vertices > 2]
        segments = [p.points[:, :2] for p in polygons if p.n_vertices == 2]
        if surfaces:
            ax.add_collection(PolyCollection(surfaces, facecolors=style.polygon_fill,
                                             alpha=style.polygon_alpha, edgecolors='none'))
        if segments:
            ax.add_collection(LineCollection(segments, colors=style.polygon_fill,
                                             linewidths=4 * style.outline_linewidth,
                                             alpha=style.polygon_alpha))
        if show_cells:
            cells = [c.vertices[:, :2] for p in polygons if p.n_vertices > 2 for c in p.cells()]
            if cells:
                ax.add_collection(PolyCollection(cells, facecolors='none',
                                                 edgecolors=style.cell_edge_color,
                                                 linewidths=style.cell_linewidth))

        ax.legend(loc='best')
        Visualizer._finalize_figure(fig, ax, style,
                                    title or f"{interface.name}: {len(polygons)} segments",
                                    save_path)
        return fig

    @staticmethod
    def plot_distribution(interface, ax: Optional[plt.Axes] = None, figsize=None,
                          save_path: Optional[str] = None,
                          style: Optional[PlotStyle] = None) -> plt.Figure:
        """Bar chart of owned slave and held master elements per rank."""
        if not interface.views:
            raise ValueError("Interface has not been evaluated yet")
        fig, ax, style = Visualizer._setup_figure(ax, figsize, style)

        ranks = np.arange(len(interface.views))
        slaves = [len(v.slave_elements) for v in interface.views]
        masters = [len(v.master_elements) for v in interface.views]
        width = 0.4
        ax.bar(ranks - width / 2, slaves, width, color=style.slave_color, label='owned slave')
        ax.bar(ranks + width / 2, masters, width, color=style.master_color, label='held master')
        ax.set_xticks(ranks)
        ax.set_xlabel("rank", fontsize=style.label_fontsize)
        ax.set_ylabel("elements", fontsize=style.label_fontsize)
        ax.set_title(f"Parallel distribution of {interface.name}",
                     fontsize=style.title_fontsize)
        ax.legend(loc='best')
        fig.tight_layout()
        if save_path:
            fig.savefig(save_path, dpi=style.dpi, bbox_inches='tight')
            print(f"Saved: {save_path}")
        return fig

    @staticmethod
    def export_polygons_vtk(polygons: Sequence[IntersectionPolygon], filename: str,
                            dir_name: str = '', verbose: bool = False) -> str:
        """
        Write the integration cells of all polygons to a VTK file.

        Cells are triangles (surface interfaces) or lines (line interfaces),
        tagged with the slave and master element of their polygon.

        Returns
        -------
        str
            Path of the written file
        """
        points = []
        triangles, lines = [], []
        tri_tags, line_tags = [], []
        for polygon in polygons:
            for cell in polygon.cells():
                start = len(points)
                points.extend(cell.vertices)
                ids = list(range(start, start + len(cell.vertices)))
                if len(ids) == 2:
                    lines.append(ids)
                    line_tags.append((polygon.slave_id, polygon.master_id))
                else:
                    triangles.append(ids)
                    tri_tags.append((polygon.slave_id, polygon.master_id))

        cells, slave_ids, master_ids = [], [], []
        for kind, conn, tags in (('triangle', triangles, tri_tags), ('line', lines, line_tags)):
            if conn:
                cells.append((kind, np.array(conn, dtype=int)))
                slave_ids.append(np.array([t[0] for t in tags], dtype=int))
                master_ids.append(np.array([t[1] for t in tags], dtype=int))

        mesh = meshio.Mesh(np.array(points, dtype=float).reshape(-1, 3), cells,
                           cell_data={'slave_id': slave_ids, 'master_id': master_ids})

        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        path = os.path.join(dir_name, filename)
        meshio.write(path, mesh, file_format='vtk')
        if verbose:
            print(f"Saved: {path} ({sum(len(c[1]) for c in cells)} cells)")
        return path
