"""
Projection and segmentation of slave/master element pairs.

Key Concepts
------------

**Auxiliary plane**:
    Both elements of a pair are projected onto a plane through the slave
    element center, orthogonal to the slave center normal. For line
    interfaces (2D problems) the plane degenerates to a line along the
    slave element.

**Polygon clipping (Sutherland-Hodgman)**:
    The projected master outline is clipped successively against every
    edge of the projected slave outline (convex, counter-clockwise). The
    result is the overlap polygon. Each vertex keeps a tag telling whether
    it is a slave node, a master node or the intersection of a slave edge
    with a master edge.

**Integration cells**:
    The overlap polygon is triangulated (Delaunay, center fan or vertex
    fan). Mortar integrals are evaluated with Gauss rules on these cells,
    the integration points being projected back onto both elements.

Degenerate cases are not errors: a pair without overlap, an overlap below
the area tolerance and pure edge or point contact (grazing) all yield
``None`` and contribute nothing.
"""

import warnings
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

import numpy as np
from scipy.spatial import Delaunay

from MortarCore.Objects.Exceptions import GeometryDegenerateWarning
from MortarCore.Objects.Interface import ShapeFunction as sf
from MortarCore.Objects.Interface.Element import (InterfaceElement, characteristic_size,
                                                  element_measure)
from MortarCore.Objects.Parameters import MortarConstants, MortarParameters, Triangulation


SLAVE = 'slave'
MASTER = 'master'
LINECLIP = 'lineclip'

_TAG_PRIORITY = {SLAVE: 0, MASTER: 1, LINECLIP: 2}


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class VertexTag:
    """
    Origin of a clip polygon vertex.

    Attributes
    ----------
    kind : str
        'slave' (slave node), 'master' (master node) or 'lineclip'
        (slave edge / master edge intersection)
    node : int
        Node gid for 'slave' and 'master' vertices, -1 otherwise
    slave_edge : int
        Local slave edge (edge k joins local nodes k and k+1), -1 if unused
    master_edge : int
        Local master edge, -1 if unused
    """
    kind: str
    node: int = -1
    slave_edge: int = -1
    master_edge: int = -1


@dataclass
class AuxiliaryPlane:
    """
    Plane (line in 2D) onto which a slave/master pair is projected.

    Attributes
    ----------
    center : np.ndarray
        Slave element center
    normal : np.ndarray
        Unit slave normal at the center
    basis : np.ndarray
        In-plane orthonormal basis (e1, e2), shape (2, 3); (e1, e2, n) is
        right-handed
    """
    center: np.ndarray
    normal: np.ndarray
    basis: np.ndarray

    @classmethod
    def from_element(cls, coords: np.ndarray, shape,
                     weights: Optional[np.ndarray] = None) -> Optional['AuxiliaryPlane']:
        """Plane of a slave element; None if its normal is undefined."""
        normal = sf.unit_normal(coords, shape, None, weights)
        if not normal.any():
            return None
        center = coords.mean(axis=0)

        v = coords[1] - coords[0]
        e1 = v - (v @ normal) * normal
        e1 /= np.linalg.norm(e1)
        e2 = np.cross(normal, e1)
        return cls(center=center, normal=normal, basis=np.array([e1, e2]))

    def to_plane(self, points: np.ndarray) -> np.ndarray:
        """In-plane coordinates of (projected) points, shape (n, 2)."""
        return (np.atleast_2d(points) - self.center) @ self.basis.T

    def to_space(self, uv: np.ndarray) -> np.ndarray:
        return self.center + np.atleast_2d(uv) @ self.basis

    def project(self, points: np.ndarray) -> np.ndarray:
        p = np.atleast_2d(points)
        return p - np.outer((p - self.center) @ self.normal, self.normal)


@dataclass
class IntegrationCell:
    """Triangle or segment of the auxiliary plane carrying a Gauss rule."""
    vertices: np.ndarray
    normal: np.ndarray

    @property
    def measure(self) -> float:
        v = self.vertices
        if len(v) == 2:
            return float(np.linalg.norm(v[1] - v[0]))
        return 0.5 * float(np.linalg.norm(np.cross(v[1] - v[0], v[2] - v[0])))


@dataclass
class IntersectionPolygon:
    """
    Overlap of one slave/master pair in the auxiliary plane.

    Attributes
    ----------
    slave_id, master_id : int
        Element gids of the pair
    plane : AuxiliaryPlane
        Projection plane
    points2d : np.ndarray
        Vertices in plane coordinates, counter-clockwise, shape (k, 2)
    points : np.ndarray
        Vertices in space (on the plane), shape (k, 3)
    tags : List[VertexTag]
        Origin of every vertex
    area : float
        Polygon area (segment length for line interfaces)
    triangulation : Triangulation
        Subdivision used by :meth:`cells`
    """
    slave_id: int
    master_id: int
    plane: AuxiliaryPlane
    points2d: np.ndarray
    points: np.ndarray
    tags: List[VertexTag]
    area: float
    triangulation: Triangulation = Triangulation.DELAUNAY
    _cells: Optional[List[IntegrationCell]] = field(default=None, repr=False)

    @property
    def n_vertices(self) -> int:
        return len(self.points)

    @property
    def centroid(self) -> np.ndarray:
        return self.points.mean(axis=0)

    def cells(self) -> List[IntegrationCell]:
        if self._cells is None:
            self._cells = self.triangulate(self.triangulation)
        return self._cells

    def triangulate(self, method=None) -> List[IntegrationCell]:
        """
        Split the polygon into integration cells.

        Segments (line interfaces) form a single cell. Polygons with three
        vertices form one triangle whatever the method.
        """
        method = Triangulation.parse(method or self.triangulation)
        n = self.plane.normal
        k = self.n_vertices

        if k == 2:
            return [IntegrationCell(self.points.copy(), n)]
        if k == 3:
            return [IntegrationCell(self.points.copy(), n)]

        if method is Triangulation.DELAUNAY:
            simplices = Delaunay(self.points2d).simplices
            triangles = sorted(tuple(sorted(int(i) for i in s)) for s in simplices)
            return [IntegrationCell(self.points[list(t)], n) for t in triangles]

        if method is Triangulation.CENTER:
            c = self.points.mean(axis=0)
            return [IntegrationCell(np.array([c, self.points[i], self.points[(i + 1) % k]]), n)
                    for i in range(k)]

        return [IntegrationCell(self.points[[0, i, i + 1]], n) for i in range(1, k - 1)]


@dataclass
class _Vertex:
    point: np.ndarray
    tag: VertexTag
    # Edge the polygon runs along from this vertex to the next: ('m' | 's', local edge)
    out_edge: Tuple[str, int]


# =============================================================================
# POLYGON HELPERS
# =============================================================================

def signed_area(points2d: np.ndarray) -> float:
    """Shoelace area, positive for counter-clockwise polygons."""
    x = points2d[:, 0]
    y = points2d[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def _edge_id(i: int, j: int, n: int) -> int:
    return i if (i + 1) % n == j else j


def _cross2(a, b) -> float:
    return a[0] * b[1] - a[1] * b[0]


def _ccw_order(points2d: np.ndarray) -> List[int]:
    order = list(range(len(points2d)))
    if signed_area(points2d) < 0:
        order.reverse()
    return order


def sutherland_hodgman(subject: List[_Vertex], clip2d: np.ndarray, clip_order: List[int],
                       clip_nodes: Tuple[int, ...], tolerance: float) -> List[_Vertex]:
    """
    Clip a polygon against a convex counter-clockwise polygon.

    Points closer than ``tolerance`` to a clip edge count as inside.
    """
    n = len(clip_order)
    output = list(subject)

    for pos, i in enumerate(clip_order):
        if not output:
            break
        j = clip_order[(pos + 1) % n]
        edge = _edge_id(i, j, n)
        A, B = clip2d[i], clip2d[j]
        ab = B - A
        length = np.linalg.norm(ab)

        def dist(p):
            return _cross2(ab, p - A) / length

        inp = output
        output = []
        S = inp[-1]
        dS = dist(S.point)
        for E in inp:
            dE = dist(E.point)
            if dE >= -tolerance:
                if dS < -tolerance:
                    output.append(_intersect(S, E, dS, dE, edge, S.out_edge,
                                             clip2d, clip_nodes))
                output.append(E)
            elif dS >= -tolerance:
                output.append(_intersect(S, E, dS, dE, edge, ('s', edge),
                                         clip2d, clip_nodes))
            S, dS = E, dE

    return output


def _intersect(S, E, dS, dE, clip_edge, out_edge, clip2d, clip_nodes) -> _Vertex:
    n = len(clip_nodes)
    side, edge = S.out_edge

    if side == 's':
        # Two slave edges meet at a slave node
        common = {edge, (edge + 1) % n} & {clip_edge, (clip_edge + 1) % n}
        if common:
            local = common.pop()
            return _Vertex(clip2d[local].copy(), VertexTag(SLAVE, node=clip_nodes[local]),
                           out_edge)

    t = dS / (dS - dE)
    point = S.point + t * (E.point - S.point)
    master_edge = edge if side == 'm' else -1
    return _Vertex(point, VertexTag(LINECLIP, slave_edge=clip_edge, master_edge=master_edge),
                   out_edge)


def _merge_close(vertices: List[_Vertex], tolerance: float) -> List[_Vertex]:
    def better(a, b):
        return a if _TAG_PRIORITY[a.tag.kind] <= _TAG_PRIORITY[b.tag.kind] else b

    merged: List[_Vertex] = []
    for v in vertices:
        if merged and np.linalg.norm(v.point - merged[-1].point) <= tolerance:
            merged[-1] = better(merged[-1], v)
            continue
        merged.append(v)

    while len(merged) > 1 and np.linalg.norm(merged[0].point - merged[-1].point) <= tolerance:
        merged[0] = better(merged[0], merged[-1])
        merged.pop()
    return merged


def _drop_collinear(vertices: List[_Vertex], tolerance: float) -> List[_Vertex]:
    changed = True
    while changed and len(vertices) > 3:
        changed = False
        k = len(vertices)
        for i in range(k):
            prev = vertices[i - 1].point
            nxt = vertices[(i + 1) % k].point
            span = np.linalg.norm(nxt - prev)
            if span > 0 and abs(_cross2(nxt - prev, vertices[i].point - prev)) / span <= tolerance:
                vertices = vertices[:i] + vertices[i + 1:]
                changed = True
                break
    return vertices


# =============================================================================
# CLIPPING
# =============================================================================

def clip(slave: InterfaceElement, master: InterfaceElement, nodes: Mapping,
         parameters: Optional[MortarParameters] = None) -> Optional[IntersectionPolygon]:
    """
    Overlap of a slave and a master element in the slave auxiliary plane.

    Parameters
    ----------
    slave, master : InterfaceElement
        Element pair (line2 pairs or surface pairs)
    nodes : Mapping[int, InterfaceNode]
        Node table holding current coordinates
    parameters : MortarParameters, optional
        Tolerances, triangulation and orientation check

    Returns
    -------
    IntersectionPolygon or None
        None if the elements do not overlap, overlap below the area
        tolerance, only graze each other, or are degenerate
    """
    params = parameters or MortarParameters(dim=2 if slave.shape.parametric_dim == 1 else 3)
    Xs = slave.coordinates(nodes)
    Xm = master.coordinates(nodes)
    ws = slave.weights(nodes)

    s_size = characteristic_size(Xs)
    m_size = characteristic_size(Xm)
    if s_size <= MortarConstants.DEGENERATE_SIZE or m_size <= MortarConstants.DEGENERATE_SIZE:
        which = slave.gid if s_size <= MortarConstants.DEGENERATE_SIZE else master.gid
        warnings.warn(f"Element {which} has zero size, pair ({slave.gid}, {master.gid}) skipped",
                      GeometryDegenerateWarning, stacklevel=2)
        return None

    plane = AuxiliaryPlane.from_element(Xs, slave.shape.value, ws)
    if plane is None:
        warnings.warn(f"Slave element {slave.gid} has no defined normal, pair skipped",
                      GeometryDegenerateWarning, stacklevel=2)
        return None

    if params.check_orientation:
        nm = sf.unit_normal(Xm, master.shape.value, None, master.weights(nodes))
        if plane.normal @ nm >= MortarConstants.ORIENTATION_THRESHOLD:
            return None

    tol = params.merge_tolerance * s_size
    min_area = params.area_tolerance * element_measure(Xs, slave.shape.value)

    if slave.shape.parametric_dim == 1:
        return _clip_lines(slave, master, Xs, Xm, plane, tol, min_area)
    return _clip_surfaces(slave, master, Xs, Xm, plane, tol, min_area, params.triangulation)


def _clip_lines(slave, master, Xs, Xm, plane, tol, min_length):
    s = plane.to_plane(Xs)[:, 0]
    m = plane.to_plane(Xm)[:, 0]

    s_lo, s_hi = int(np.argmin(s)), int(np.argmax(s))
    m_lo, m_hi = int(np.argmin(m)), int(np.argmax(m))

    if s[s_lo] >= m[m_lo] - tol:
        lo, lo_tag = s[s_lo], VertexTag(SLAVE, node=slave.node_ids[s_lo])
    else:
        lo, lo_tag = m[m_lo], VertexTag(MASTER, node=master.node_ids[m_lo])

    if s[s_hi] <= m[m_hi] + tol:
        hi, hi_tag = s[s_hi], VertexTag(SLAVE, node=slave.node_ids[s_hi])
    else:
        hi, hi_tag = m[m_hi], VertexTag(MASTER, node=master.node_ids[m_hi])

    length = hi - lo
    if length <= max(min_length, tol):
        return None

    points2d = np.array([[lo, 0.0], [hi, 0.0]])
    return IntersectionPolygon(slave_id=slave.gid, master_id=master.gid, plane=plane,
                               points2d=points2d, points=plane.to_space(points2d),
                               tags=[lo_tag, hi_tag], area=float(length))


def _clip_surfaces(slave, master, Xs, Xm, plane, tol, min_area, triangulation):
    s2 = plane.to_plane(Xs)
    m2 = plane.to_plane(Xm)
    ns, nm = len(s2), len(m2)

    # Projected master may be degenerate (orthogonal to the plane)
    if abs(signed_area(m2)) <= min_area:
        return None

    m_order = _ccw_order(m2)
    subject = []
    for pos, i in enumerate(m_order):
        j = m_order[(pos + 1) % nm]
        subject.append(_Vertex(m2[i].copy(), VertexTag(MASTER, node=master.node_ids[i]),
                               ('m', _edge_id(i, j, nm))))

    clipped = sutherland_hodgman(subject, s2, _ccw_order(s2), slave.node_ids, tol)
    vertices = _drop_collinear(_merge_close(clipped, tol), tol)
    if len(vertices) < 3:
        return None

    points2d = np.array([v.point for v in vertices])
    area = signed_area(points2d)
    if area <= min_area:
        return None

    return IntersectionPolygon(slave_id=slave.gid, master_id=master.gid, plane=plane,
                               points2d=points2d, points=plane.to_space(points2d),
                               tags=[v.tag for v in vertices], area=float(area),
                               triangulation=triangulation)
