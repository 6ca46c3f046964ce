#!/usr/bin/env python3

"""
Camera Alignment Moiré Table Generator
Renders a 4:3 frame with a dashed line moiré, five concentric ring targets and guide lines,
for aligning a film camera against a screen, projector or scanner.

Table of Contents
   1. Setup
   2. Fundamental Functions
   3. Drawing Surfaces
   4. Table Drawing
   5. Presets
   6. Commands
"""

# ----------------------1. Setup----------------------------

import math
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import cache

import numpy as np
import toml
from PIL import Image, ImageColor, ImageDraw
import drawsvg as svg


PI = math.pi
PI_QUARTER = PI / 4

FF = 255
WH = tuple[int, int]

FRAME_W, FRAME_H = 4, 3
"""frame aspect ratio, width:height"""

RING_START_DIV = 50  # first ring width is the frame height over this
RING_MIN_COUNT = 20  # fewer rings than this would fit in a target: shrink the first ring
RING_STEP_DIV = 5  # ring widths progress over out_r / RING_STEP_DIV steps
RING_FEATHER = 5  # gradient starts this far inside each ring
RING_MIN_R = 5


class Color(Enum):
    WHITE, BLACK = (FF, FF, FF), (0, 0, 0)
    RED, GREY = (FF, 0, 0), (127, 127, 127)

    CLEAR = BLACK  # RGB surfaces have no transparency to clear to

    @staticmethod
    @cache
    def to_pil(col_spec):
        return col_spec.value if isinstance(col_spec, Color) else col_spec

    @classmethod
    def to_rgb(cls, col_spec) -> tuple[int, int, int]:
        col = cls.to_pil(col_spec)
        return ImageColor.getrgb(col)[:3] if isinstance(col, str) else col

    @classmethod
    def to_str(cls, col):
        for name, val in cls._member_map_.items():
            if val == col:
                return name.lower()
        if isinstance(col, tuple):
            return f'rgb({col[0]},{col[1]},{col[2]})'
        elif isinstance(col, cls):
            return cls.to_str(col.value)

    @classmethod
    def from_str(cls, color: str):
        return getattr(cls, color.upper(), color)


class OutFormat(Enum):
    PNG, JPEG, SVG = 'png', 'jpg', 'svg'


@dataclass(frozen=True)
class GradientStop:
    offset: float
    color: Color
    opacity: float = 1.0


@dataclass(frozen=True)
class Style:
    fg: Color = Color.BLACK
    """dashes, dark ring bands and guide lines"""
    bg: Color = Color.WHITE
    """frame fill and light ring bands"""
    border: Color = Color.BLACK
    """surface outside the frame"""

    @classmethod
    def from_dict(cls, style_def: dict):
        style_args = dict(style_def)
        for key in ('fg', 'bg', 'border'):
            if key in style_args:
                style_args[key] = Color.from_str(style_args[key])
                Color.to_rgb(style_args[key])  # reject unknown color names early
        return cls(**style_args)

    def ring_stops(self) -> tuple[GradientStop, ...]:
        """Soft edged light-dark-light band across one ring."""
        light, dark = self.bg, self.fg
        return (GradientStop(0, light, 0),
                GradientStop(0.1, light),
                GradientStop(0.45, dark),
                GradientStop(0.55, dark),
                GradientStop(0.9, light),
                GradientStop(1, light, 0))


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle from its top left corner."""
    top_left_x: float = 0
    top_left_y: float = 0
    width: float = 0
    height: float = 0

    @property
    def right(self):
        return self.top_left_x + self.width

    @property
    def bottom(self):
        return self.top_left_y + self.height

    @property
    def center_x(self):
        return self.top_left_x + self.width / 2

    @property
    def center_y(self):
        return self.top_left_y + self.height / 2


# ----------------------2. Fundamental Functions----------------------------


def frame_rect(surface_w, surface_h) -> Rect:
    """
    The 4:3 frame of full surface height, centered horizontally.
    A surface narrower than 4:3 gets a frame overhanging both sides (negative top_left_x).
    """
    frame_w = math.floor(surface_h * FRAME_W / FRAME_H)
    border_w = math.floor((surface_w - frame_w) / 2)
    return Rect(border_w, 0, frame_w, surface_h)


def pp_line_width(value) -> int:
    """Stroke width that stays on whole pixels, given the dimension perpendicular to the line."""
    return 3 if value % 2 else 4


def corner_target_size(rect: Rect) -> float:
    """
    Diameter of the circle inscribed into a corner of the rect.
    On a quarter of the rect, with half width a and half height b, a circle of radius R = b
    is swung from the far corner at angle Y until it touches both edges of the quarter:
    a = X + R·cos(Y) and b = X + R·sin(Y), so Y = π/4 - asin(-(b - a) / b) and X = b - R·sin(Y).
    X is the diameter of the corner target.
    """
    a = rect.width / 2
    b = rect.height / 2
    if b <= 0:
        raise ValueError(f'Corner target needs a positive height, got: {rect.height}')
    y = PI_QUARTER - math.asin(-(b - a) / b)
    return b - b * math.sin(y)


@dataclass(frozen=True)
class RingBand:
    """Radial extent of one ring gradient."""
    in_r: float
    out_r: float


def ring_bands(out_r: float, rect_h: float):
    """
    Ring gradients of a target with outer radius out_r, innermost first.
    Ring widths follow a geometric progression from the frame-height derived start width,
    fine near the middle, ending before the outer radius.
    """
    if out_r <= 0:
        return
    start_r = math.floor(rect_h / RING_START_DIV)
    if start_r <= 0:
        return
    if out_r / start_r < RING_MIN_COUNT:
        start_r = out_r / 10
    q = math.pow(1 / start_r, 1 / (out_r / RING_STEP_DIV))
    cur_r = start_r
    step = 1
    while cur_r <= out_r:
        ring_w = start_r * math.pow(q, step - 1)
        if cur_r + ring_w > out_r or ring_w <= 1 or cur_r < RING_MIN_R:
            return
        yield RingBand(cur_r - RING_FEATHER, cur_r + ring_w)
        cur_r += ring_w
        step += 1


@dataclass(frozen=True)
class DashRow:
    y: float
    offset: float


def dash_rows(rect: Rect):
    """Rows of the line moiré; each row's dashes start half a dash period after the previous row's."""
    cell_size = pp_line_width(rect.height) * 2
    line_y = cell_size / 2
    offset = 0
    while line_y <= rect.height:
        yield DashRow(line_y, offset)
        line_y += cell_size
        offset = 0 if offset == cell_size else cell_size


Circle = tuple[float, float, float]
Segment = tuple[float, float, float, float]


@dataclass(frozen=True)
class TableLayout:
    """Table geometry for one surface size; the corner target radius is shared by targets and guides."""
    surface_w: int
    surface_h: int
    frame: Rect
    corner_target_r: float = 0

    @classmethod
    def from_surface(cls, surface_w, surface_h):
        frame = frame_rect(surface_w, surface_h)
        corner_target_r = corner_target_size(frame) / 2 if frame.height > 0 else 0
        return cls(surface_w, surface_h, frame, corner_target_r)

    @property
    def has_targets(self):
        return self.frame.height > 0

    @property
    def targets(self) -> list[Circle]:
        """(x, y, r) of the center target, then top left, top right, bottom left, bottom right."""
        f, c = self.frame, self.corner_target_r
        return [(f.center_x, f.center_y, f.height / 2),
                (f.top_left_x + c, f.top_left_y + c, c),
                (f.right - c, f.top_left_y + c, c),
                (f.top_left_x + c, f.bottom - c, c),
                (f.right - c, f.bottom - c, c)]

    @property
    def h_guides(self) -> list[Segment]:
        f, c = self.frame, self.corner_target_r
        return [(f.top_left_x, y, f.right, y) for y in (f.center_y, f.top_left_y + c, f.bottom - c)]

    @property
    def v_guides(self) -> list[Segment]:
        f, c = self.frame, self.corner_target_r
        return [(x, f.top_left_y, x, f.bottom) for x in (f.center_x, f.top_left_x + c, f.right - c)]

    @property
    def h_guide_w(self):
        return pp_line_width(self.frame.height)

    @property
    def v_guide_w(self):
        return pp_line_width(self.frame.width)


def dash_segments(x0, y0, x1, y1, dash: tuple[float, float] = None):
    """Drawn parts of a stroke, with the (on, off) dash pattern starting at (x0, y0)."""
    length = math.hypot(x1 - x0, y1 - y0)
    if length == 0:
        return
    if not dash:
        yield x0, y0, x1, y1
        return
    on, off = dash
    ux, uy = (x1 - x0) / length, (y1 - y0) / length
    pos = 0
    while pos < length:
        end = min(pos + on, length)
        yield x0 + ux * pos, y0 + uy * pos, x0 + ux * end, y0 + uy * end
        pos += on + off


DEBUG = False


# ----------------------3. Drawing Surfaces----------------------------


class Out:
    def __init__(self, r):
        self.r = r
    def clear(self, w, h): pass
    def fill_rect(self, rect: Rect, col): pass
    def draw_box(self, rect: Rect, col, width=1): pass
    def draw_line(self, x0, y0, x1, y1, col, width=1, dash=None): pass
    def fill_radial_gradient(self, rect: Rect, xc, yc, r0, r1, stops: tuple[GradientStop, ...]): pass


class RasterOut(Out):
    r: ImageDraw.ImageDraw = None

    def __init__(self, r, img: Image.Image = None):
        super().__init__(r)
        self.img = img

    @classmethod
    def for_image(cls, i: Image.Image):
        return cls(ImageDraw.Draw(i), i)

    def fill_px(self, x0, y0, x1, y1, col):
        """Fill whole pixels from (x0, y0) up to but excluding (x1, y1)."""
        x0, y0, x1, y1 = round(x0), round(y0), round(x1), round(y1)
        if x1 <= x0 or y1 <= y0:
            return
        self.r.rectangle((x0, y0, x1 - 1, y1 - 1), fill=Color.to_pil(col))

    def clear(self, w, h):
        self.fill_px(0, 0, w, h, Color.CLEAR)

    def fill_rect(self, rect: Rect, col):
        self.fill_px(rect.top_left_x, rect.top_left_y, rect.right, rect.bottom, col)

    def draw_box(self, rect: Rect, col, width=1):
        self.r.rectangle((rect.top_left_x, rect.top_left_y, rect.right, rect.bottom),
                         outline=Color.to_pil(col), width=width)

    def stroke(self, x0, y0, x1, y1, col, width):
        # Axis-aligned strokes cover exactly `width` pixel rows/columns
        if y0 == y1:
            top = round(y0 - width / 2)
            self.fill_px(min(x0, x1), top, max(x0, x1), top + width, col)
        elif x0 == x1:
            left = round(x0 - width / 2)
            self.fill_px(left, min(y0, y1), left + width, max(y0, y1), col)
        else:
            raise ValueError(f'Only horizontal and vertical strokes are supported: {(x0, y0, x1, y1)}')

    def draw_line(self, x0, y0, x1, y1, col, width=1, dash=None):
        for segment in dash_segments(x0, y0, x1, y1, dash):
            self.stroke(*segment, col, width)

    def fill_radial_gradient(self, rect: Rect, xc, yc, r0, r1, stops: tuple[GradientStop, ...]):
        x0, y0 = math.floor(rect.top_left_x), math.floor(rect.top_left_y)
        x1, y1 = math.ceil(rect.right), math.ceil(rect.bottom)
        if stops[-1].opacity == 0:  # nothing shows past r1
            x0, y0 = max(x0, math.floor(xc - r1)), max(y0, math.floor(yc - r1))
            x1, y1 = min(x1, math.ceil(xc + r1)), min(y1, math.ceil(yc + r1))
        x0, y0 = max(x0, 0), max(y0, 0)
        x1, y1 = min(x1, self.img.width), min(y1, self.img.height)
        if x1 <= x0 or y1 <= y0:
            return
        ys, xs = np.ogrid[y0:y1, x0:x1]
        d = np.hypot(xs + 0.5 - xc, ys + 0.5 - yc)
        t = np.clip((d - r0) / (r1 - r0), 0, 1)
        offsets = [stop.offset for stop in stops]
        rgbs = [Color.to_rgb(stop.color) for stop in stops]
        alpha = np.interp(t, offsets, [stop.opacity for stop in stops])[..., np.newaxis]
        src = np.stack([np.interp(t, offsets, [rgb[i] for rgb in rgbs]) for i in range(3)], axis=-1)
        box = (x0, y0, x1, y1)
        dst = np.asarray(self.img.crop(box), dtype=np.float64)
        out = src * alpha + dst * (1 - alpha)
        self.img.paste(Image.fromarray(np.rint(out).astype(np.uint8)), box)


class SVGOut(Out):
    r: svg.Drawing = None

    @classmethod
    def for_drawing(cls, i: svg.Drawing):
        return cls(i)

    @cache
    def color_str(self, col):
        return Color.to_str(col) or col

    def clear(self, w, h):
        self.r.elements.clear()

    def fill_rect(self, rect: Rect, col):
        if rect.width <= 0 or rect.height <= 0:
            return
        self.r.append(svg.Rectangle(rect.top_left_x, rect.top_left_y, rect.width, rect.height,
                                    fill=self.color_str(col)))

    def draw_box(self, rect: Rect, col, width=1):
        self.r.append(svg.Rectangle(rect.top_left_x, rect.top_left_y, rect.width, rect.height,
                                    fill_opacity=0, stroke=self.color_str(col), stroke_width=width))

    def draw_line(self, x0, y0, x1, y1, col, width=1, dash=None):
        line_args = {'stroke': self.color_str(col), 'stroke_width': width}
        if dash:
            line_args['stroke_dasharray'] = f'{dash[0]} {dash[1]}'
        self.r.append(svg.Line(x0, y0, x1, y1, **line_args))

    def fill_radial_gradient(self, rect: Rect, xc, yc, r0, r1, stops: tuple[GradientStop, ...]):
        if rect.width <= 0 or rect.height <= 0:
            return
        # SVG gradients run from the center: map [r0, r1] onto [r0/r1, 1]
        grad = svg.RadialGradient(xc, yc, r1)
        for stop in stops:
            grad.add_stop((r0 + stop.offset * (r1 - r0)) / r1, self.color_str(stop.color), stop.opacity)
        self.r.append(svg.Rectangle(rect.top_left_x, rect.top_left_y, rect.width, rect.height, fill=grad))


# ----------------------4. Table Drawing----------------------------


@dataclass(frozen=True)
class Renderer:
    r: Out = None
    style: Style = Style()

    @classmethod
    def to_image(cls, i, s: Style = None):
        out = None
        if isinstance(i, Image.Image):
            out = RasterOut.for_image(i)
        elif isinstance(i, svg.Drawing):
            out = SVGOut.for_drawing(i)
        return cls(out, s or Style())

    def draw_line_moire(self, rect: Rect):
        """Dashed rows across the rect, alternately shifted to read as a checkerboard."""
        cell_size = pp_line_width(rect.height) * 2
        col = self.style.fg
        for row in dash_rows(rect):
            y = rect.top_left_y + row.y
            self.r.draw_line(rect.top_left_x + row.offset, y, rect.right, y, col,
                             width=cell_size, dash=(cell_size, cell_size))

    def draw_target_moire(self, x: float, y: float, out_r: float, rect: Rect) -> int:
        """
        Draw a ring target centered on (x, y), painting only within rect.
        :param x: center on horizontal axis
        :param y: center on vertical axis
        :param out_r: outer radius in px
        :param rect: affected rectangle, whose height also sets the ring widths
        :return: number of rings drawn
        """
        if DEBUG:
            self.r.draw_box(Rect(x - out_r, y - out_r, 2 * out_r, 2 * out_r), Color.GREY)
        stops = self.style.ring_stops()
        n = 0
        for band in ring_bands(out_r, rect.height):
            self.r.fill_radial_gradient(rect, x, y, band.in_r, band.out_r, stops)
            n += 1
        return n

    def draw_guides(self, layout: TableLayout):
        col = self.style.fg
        for (x0, y0, x1, y1) in layout.h_guides:
            self.r.draw_line(x0, y0, x1, y1, col, width=layout.h_guide_w)
        for (x0, y0, x1, y1) in layout.v_guides:
            self.r.draw_line(x0, y0, x1, y1, col, width=layout.v_guide_w)

    def render_table(self, surface_w: int, surface_h: int) -> TableLayout:
        """Repaint the whole surface with the table for its current pixel size."""
        s = self.style
        layout = TableLayout.from_surface(surface_w, surface_h)
        frame = layout.frame
        if DEBUG:
            print(f' Surface: {surface_w}x{surface_h}, frame: {frame}, corner target r: {layout.corner_target_r}')
        self.r.clear(surface_w, surface_h)
        self.r.fill_rect(Rect(0, 0, surface_w, surface_h), s.border)
        self.r.fill_rect(frame, s.bg)
        self.draw_line_moire(frame)
        if not layout.has_targets:
            return layout
        for (x, y, target_r) in layout.targets:
            self.draw_target_moire(x, y, target_r, frame)
        self.draw_guides(layout)
        return layout


# ----------------------5. Presets----------------------------


@dataclass(frozen=True)
class Surface:
    """Drawing surface size in pixels"""
    width: int
    height: int
    dpi: float = 96
    """pixels per inch, to convert physical dimensions"""

    @staticmethod
    def dim_to_pixels(dim, dpi) -> int:
        if isinstance(dim, (int, float)):
            return int(dim)
        if matches := re.match(r'^\s*([\d.]+)\s*(\w*)\s*$', dim):
            num, units = matches.group(1), matches.group(2)
            result = float(num) if '.' in num else int(num)
            if units == 'cm':
                result *= dpi / 2.54
            elif units == 'mm':
                result *= dpi / 25.4
            elif units == 'in':
                result *= dpi
            elif units == 'pt':
                result *= dpi / 72
            elif units not in ('', 'px'):
                raise ValueError(f'Unrecognized dimension units: {dim}')
            return int(result)
        raise ValueError(f'Unrecognized dimension: {dim}')

    @property
    def wh(self) -> WH:
        return self.width, self.height

    @classmethod
    def from_dict(cls, surface_def: dict):
        dpi = surface_def.get('dpi', cls.dpi)
        return cls(width=cls.dim_to_pixels(surface_def['width'], dpi),
                   height=cls.dim_to_pixels(surface_def['height'], dpi),
                   dpi=dpi)


@dataclass(frozen=True)
class Preset:
    name: str
    surface: Surface
    subtitle: str = None
    style: Style = field(default_factory=Style)

    @classmethod
    def from_dict(cls, preset_def: dict):
        return cls(name=preset_def.get('name'), subtitle=preset_def.get('subtitle'),
                   surface=Surface.from_dict(preset_def['surface']),
                   style=Style.from_dict(preset_def.get('style', {})))

    @classmethod
    def from_toml_file(cls, toml_filename: str):
        return cls.from_dict(toml.load(toml_filename))

    def describe(self):
        w, h = self.surface.wh
        return f'{self.name} ({w}x{h}){": " + self.subtitle if self.subtitle else ""}'

    example_dir_path = os.path.join(os.path.dirname(os.path.realpath(__file__)), 'moire_presets')

    @classmethod
    def from_example(cls, example_name: str):
        toml_filename = os.path.join(cls.example_dir_path, f'Preset-{example_name}.toml')
        if not os.path.exists(toml_filename):
            raise ValueError(f'Unrecognized preset name: {example_name}')
        return cls.from_toml_file(toml_filename)

    @classmethod
    def load(cls, preset_name):
        return cls.from_toml_file(preset_name) if os.path.exists(preset_name) else cls.from_example(preset_name)

    @classmethod
    def example_names(cls):
        if not os.path.isdir(cls.example_dir_path):
            return
        for fn in os.listdir(cls.example_dir_path):
            if match := re.match(r'Preset-(.*)\.toml$', fn):
                yield match.group(1)


# ----------------------6. Commands------------------------------------------


DEFAULT_BASENAME = 'camera-alignment-table'


def image_for_rendering(w: int, h: int, out_format: OutFormat, col=Color.CLEAR):
    assert w > 0
    assert h > 0
    if out_format in (OutFormat.PNG, OutFormat.JPEG):
        return Image.new('RGB', (int(w), int(h)), Color.to_pil(col))
    elif out_format == OutFormat.SVG:
        return svg.Drawing(int(w), int(h))
    raise ValueError(f'Unrecognized output format: {out_format}')


def render_table_mode(preset: Preset, out_format: OutFormat, w=None, h=None):
    w, h = w or preset.surface.width, h or preset.surface.height
    table_img = image_for_rendering(w, h, out_format)
    r = Renderer.to_image(table_img, preset.style)
    r.render_table(w, h)
    return table_img


def save_image(img_to_save, basename: str, out_format: OutFormat, output_suffix=None):
    output_filename = f"{basename}{'.' + output_suffix if output_suffix else ''}"
    output_full_path = os.path.abspath(output_filename) + '.' + out_format.value
    if out_format == OutFormat.PNG:
        img_to_save.save(output_full_path, 'PNG')
    elif out_format == OutFormat.JPEG:
        img_to_save.save(output_full_path, 'JPEG', quality=95)
    elif out_format == OutFormat.SVG:
        img_to_save.save_svg(output_full_path)
    print(f'Result saved to: file://{output_full_path}')
    return output_full_path


def main():
    """CLI processor for rendering the alignment table."""
    import argparse
    args_parser = argparse.ArgumentParser()
    args_parser.add_argument('--preset',
                             default='Default',
                             help=f'Surface preset name ({", ".join(sorted(Preset.example_names()))})'
                                  ' or path to a preset toml file')
    args_parser.add_argument('--width',
                             type=int,
                             help='Surface width in pixels, overriding the preset')
    args_parser.add_argument('--height',
                             type=int,
                             help='Surface height in pixels, overriding the preset')
    args_parser.add_argument('--format',
                             default=OutFormat.JPEG.value,
                             choices=[f.value for f in OutFormat],
                             help='Output format (JPEG for screens, PNG for lossless, SVG for print tooling)')
    args_parser.add_argument('--output',
                             default=DEFAULT_BASENAME,
                             help='Output filename without extension')
    args_parser.add_argument('--suffix',
                             help='Output filename suffix for variations')
    args_parser.add_argument('--debug',
                             action='store_true',
                             help='Print the table geometry and outline the targets')
    cli_args = args_parser.parse_args()
    out_format: OutFormat = next(f for f in OutFormat if f.value == cli_args.format)
    preset = Preset.load(cli_args.preset)
    global DEBUG
    DEBUG = cli_args.debug
    print(f'Rendering preset: {preset.describe()}')

    start_time = time.process_time()
    table_img = render_table_mode(preset, out_format, cli_args.width, cli_args.height)
    print(f'Table render finished at: {round(time.process_time() - start_time, 3)} seconds')
    save_image(table_img, cli_args.output, out_format, cli_args.suffix)
    print(f'Program finished at: {round(time.process_time() - start_time, 3)} seconds')


if __name__ == '__main__':
    main()
