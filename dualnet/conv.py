"""
Convolution Layers - sliding kernels over 1D and 2D series

Inputs are laid out attribute-major: all positions of attribute 0, then all
positions of attribute 1, and so on. Within a 2D attribute plane, x runs
fastest. Outputs use the same layout with the output attributes.

With pad_ends the kernel is centered (offset = -kernel_size // 2) and input
coordinates outside the series are clamped to the nearest edge (replicate
padding). Without padding the output series is shorter by kernel_size - 1 and
never reads outside the input.
"""
import numbers

from .base import Layer, weight_update_formula
from .formula import INT, Assign, Do, For, Let, call, clamp, var


def _pair(value):
    if isinstance(value, numbers.Integral):
        return int(value), int(value)
    x, y = value
    return int(x), int(y)


def _axis(position, size, pad_ends):
    """Input coordinate along one axis."""
    return clamp(position, 0, size - 1) if pad_ends else position


def _shift(expr, offset):
    return expr + offset if offset else expr


class Conv1d(Layer):
    """
    1D Convolutional Layer.

    Weight index = out_attr * (kernel_size * in_attrs) + in_attr * kernel_size + kx

    Args:
        series_size: Length of the input series
        in_attrs: Number of input attributes (channels)
        kernel_size: Kernel length
        pad_ends: Keep the series length by replicate-padding the ends
        out_attrs: Number of output attributes (channels)
        activation: Activation applied to the output sums
    """

    def __init__(self, series_size, in_attrs, kernel_size, pad_ends, out_attrs, activation):
        series_size, kernel_size = int(series_size), int(kernel_size)
        in_attrs, out_attrs = int(in_attrs), int(out_attrs)
        assert pad_ends or kernel_size <= series_size, (
            f"Kernel of size {kernel_size} does not fit a series of {series_size}")
        self.series_size = series_size
        self.in_attrs = in_attrs
        self.kernel_size = kernel_size
        self.pad_ends = pad_ends
        self.out_attrs = out_attrs

        self.outputs_per_kernel = series_size if pad_ends else series_size - kernel_size + 1
        self.offset = -(kernel_size // 2) if pad_ends else 0
        self.weights_per_kernel = kernel_size * in_attrs

        super().__init__(
            series_size * in_attrs,
            self.weights_per_kernel * out_attrs,
            self.outputs_per_kernel * out_attrs,
            self.weights_per_kernel,
            activation,
        )

    def forward_formula(self):
        bi, no = var('bi'), var('no')
        ai, ci, nx = var('ai'), var('ci'), var('nx')
        series_index, out_attr, total = var('series_index'), var('out_attr'), var('total')
        size, kernel = self.series_size, self.kernel_size
        return [
            Let('series_index', no % self.outputs_per_kernel, INT),
            Let('out_attr', no // self.outputs_per_kernel, INT),
            Let('total', 0.0),
            For('ai', 0, self.in_attrs, [
                For('ci', 0, kernel, [
                    Let('weight_index', out_attr * self.weights_per_kernel + ai * kernel + ci, INT),
                    Let('nx', _axis(_shift(series_index, self.offset) + ci, size, self.pad_ends), INT),
                    Assign('total',
                           call('get_input', bi, ai * size + nx) * call('get_weight', var('weight_index')),
                           '+='),
                ]),
            ]),
            Do(call('set_out_sum', bi, no, total)),
        ]

    def backward_formula(self):
        weight_index = var('weight_index')
        local_x, in_attr, out_attr, nox = var('local_x'), var('in_attr'), var('out_attr'), var('nox')
        size, kernel = self.series_size, self.kernel_size
        return weight_update_formula(
            [
                Let('local_x', weight_index % kernel, INT),
                Let('in_attr', (weight_index // kernel) % self.in_attrs, INT),
                Let('out_attr', weight_index // self.weights_per_kernel, INT),
            ],
            [('nox', self.outputs_per_kernel)],
            in_attr * size + _axis(_shift(nox + local_x, self.offset), size, self.pad_ends),
            out_attr * self.outputs_per_kernel + nox,
        )


class Conv2d(Layer):
    """
    2D Convolutional Layer.

    Weight index = out_attr * (kx * ky * in_attrs) + in_attr * (kx * ky) + ciy * kx + cix

    A Conv2d with series_size (n, 1) and kernel_size (k, 1) computes exactly
    what Conv1d(n, ..., k, ...) computes.

    Args:
        series_size: Input plane size (x, y), or an int for a square plane
        in_attrs: Number of input attributes (channels)
        kernel_size: Kernel size (x, y), or an int for a square kernel
        pad_ends: Keep the plane size by replicate-padding the borders
        out_attrs: Number of output attributes (channels)
        activation: Activation applied to the output sums
    """

    def __init__(self, series_size, in_attrs, kernel_size, pad_ends, out_attrs, activation):
        sx, sy = _pair(series_size)
        kx, ky = _pair(kernel_size)
        in_attrs, out_attrs = int(in_attrs), int(out_attrs)
        assert pad_ends or (kx <= sx and ky <= sy), (
            f"Kernel of size {(kx, ky)} does not fit a plane of {(sx, sy)}")
        self.series_size = (sx, sy)
        self.in_attrs = in_attrs
        self.kernel_size = (kx, ky)
        self.pad_ends = pad_ends
        self.out_attrs = out_attrs

        self.outputs_per_kernel = (sx, sy) if pad_ends else (sx - kx + 1, sy - ky + 1)
        self.offset = (-(kx // 2), -(ky // 2)) if pad_ends else (0, 0)
        self.weights_per_kernel = kx * ky * in_attrs

        px, py = self.outputs_per_kernel
        super().__init__(
            sx * sy * in_attrs,
            self.weights_per_kernel * out_attrs,
            px * py * out_attrs,
            self.weights_per_kernel,
            activation,
        )

    def forward_formula(self):
        bi, no = var('bi'), var('no')
        ai, cix, ciy, nx, ny = var('ai'), var('cix'), var('ciy'), var('nx'), var('ny')
        series_index, series_x, series_y = var('series_index'), var('series_x'), var('series_y')
        out_attr, total = var('out_attr'), var('total')
        sx, sy = self.series_size
        kx, ky = self.kernel_size
        px, py = self.outputs_per_kernel
        ox, oy = self.offset
        return [
            Let('series_index', no % (px * py), INT),
            Let('series_x', series_index % px, INT),
            Let('series_y', series_index // px, INT),
            Let('out_attr', no // (px * py), INT),
            Let('total', 0.0),
            For('ai', 0, self.in_attrs, [
                For('ciy', 0, ky, [
                    For('cix', 0, kx, [
                        Let('weight_index',
                            out_attr * self.weights_per_kernel + ai * (kx * ky) + ciy * kx + cix, INT),
                        Let('nx', _axis(_shift(series_x, ox) + cix, sx, self.pad_ends), INT),
                        Let('ny', _axis(_shift(series_y, oy) + ciy, sy, self.pad_ends), INT),
                        Assign('total',
                               call('get_input', bi, ai * (sx * sy) + ny * sx + nx)
                               * call('get_weight', var('weight_index')),
                               '+='),
                    ]),
                ]),
            ]),
            Do(call('set_out_sum', bi, no, total)),
        ]

    def backward_formula(self):
        weight_index = var('weight_index')
        local_xy, local_x, local_y = var('local_xy'), var('local_x'), var('local_y')
        in_attr, out_attr, nox, noy = var('in_attr'), var('out_attr'), var('nox'), var('noy')
        sx, sy = self.series_size
        kx, ky = self.kernel_size
        px, py = self.outputs_per_kernel
        ox, oy = self.offset
        nx = _axis(_shift(nox + local_x, ox), sx, self.pad_ends)
        ny = _axis(_shift(noy + local_y, oy), sy, self.pad_ends)
        return weight_update_formula(
            [
                Let('local_xy', weight_index % (kx * ky), INT),
                Let('local_x', local_xy % kx, INT),
                Let('local_y', local_xy // kx, INT),
                Let('in_attr', (weight_index // (kx * ky)) % self.in_attrs, INT),
                Let('out_attr', weight_index // self.weights_per_kernel, INT),
            ],
            [('noy', py), ('nox', px)],
            in_attr * (sx * sy) + ny * sx + nx,
            out_attr * (px * py) + noy * px + nox,
        )
