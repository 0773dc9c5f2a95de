"""
Kernel Formulas - one rule, two renderings

Layers and activations write each forward/backward rule once, as a small tree
of statements and expressions. The scalar backend runs the tree directly:
every node turns into a closure over a dict of local variables. The parallel
backend renders the same tree as CUDA C and uses it as the body of a CuPy
RawKernel. Both backends therefore run the same index arithmetic and
accumulation order.

Usage:
    from dualnet.formula import Let, Assign, For, Do, var, call, render, CUDA

    bi, no, ni = var('bi'), var('no'), var('ni')
    body = [
        Let('total', 0.0),
        For('ni', 0, 4, [
            Assign('total', call('get_weight', no * 4 + ni) * call('get_input', bi, ni), '+='),
        ]),
        Do(call('set_out_sum', bi, no, var('total'))),
    ]
    print(render(body, CUDA))
"""
import math
import numbers
import operator
from dataclasses import dataclass, field

from .cache import KernelCache

PYTHON = 'python'
CUDA = 'cuda'

INT = 'int'
FLOAT = 'float'

# Calls that go through the bound layer window of a network
ACCESSORS = frozenset([
    'get_input', 'get_weight', 'set_weight',
    'get_out_delta', 'add_in_delta', 'set_out_sum',
])

INTRINSICS = {
    PYTHON: {'clamp': 'clamp', 'exp': 'exp', 'fmax': 'max'},
    CUDA: {'clamp': 'clamp_index', 'exp': 'expf', 'fmax': 'fmaxf'},
}

OPERATORS = {
    '+': operator.add,
    '-': operator.sub,
    '*': operator.mul,
    '/': operator.truediv,
    '//': operator.floordiv,
    '%': operator.mod,
    '<': operator.lt,
    '>': operator.gt,
}

# Update operators of Assign and Store; None means plain assignment
UPDATES = {
    '=': None,
    '+=': operator.add,
    '*=': operator.mul,
    '/=': operator.truediv,
}


def wrap(value):
    """Turn a Python or NumPy number into a constant expression."""
    if isinstance(value, Expr):
        return value
    if isinstance(value, bool):
        raise TypeError("Booleans are not formula values")
    if isinstance(value, numbers.Integral):
        return Const(int(value))
    if isinstance(value, numbers.Real):
        return Const(float(value))
    raise TypeError(f"Cannot use {value!r} in a formula")


def _indent(depth):
    return '    ' * depth


def _clamp(value, low, high):
    if value < low:
        return low
    if value > high:
        return high
    return value


def _exp(value):
    # saturate to inf like expf instead of raising OverflowError
    return math.exp(value) if value < 709.0 else math.inf


FUNCTIONS = {
    'clamp': _clamp,
    'exp': _exp,
    'fmax': max,
}


# =============================================================================
# EXPRESSIONS
# =============================================================================

class Expr:
    """
    Base class for formula expressions.

    render(dialect) returns source text; closure() returns a function of the
    local-variable dict computing the value.
    """

    def __add__(self, other):
        return BinOp('+', self, wrap(other))

    def __radd__(self, other):
        return BinOp('+', wrap(other), self)

    def __sub__(self, other):
        return BinOp('-', self, wrap(other))

    def __rsub__(self, other):
        return BinOp('-', wrap(other), self)

    def __mul__(self, other):
        return BinOp('*', self, wrap(other))

    def __rmul__(self, other):
        return BinOp('*', wrap(other), self)

    def __truediv__(self, other):
        return BinOp('/', self, wrap(other))

    def __rtruediv__(self, other):
        return BinOp('/', wrap(other), self)

    def __floordiv__(self, other):
        return BinOp('//', self, wrap(other))

    def __mod__(self, other):
        return BinOp('%', self, wrap(other))

    def __neg__(self):
        return Neg(self)

    def __lt__(self, other):
        return BinOp('<', self, wrap(other))

    def __gt__(self, other):
        return BinOp('>', self, wrap(other))

    def render(self, dialect):
        raise NotImplementedError

    def closure(self):
        raise NotImplementedError


class Const(Expr):
    def __init__(self, value):
        assert math.isfinite(value), f"Constant must be finite, got {value}"
        self.value = value

    def render(self, dialect):
        if isinstance(self.value, int):
            text = str(self.value)
        else:
            text = repr(float(self.value))
            if dialect == CUDA:
                text += 'f'
        return f"({text})" if self.value < 0 else text

    def closure(self):
        value = self.value
        return lambda env: value


class Var(Expr):
    def __init__(self, name):
        self.name = name

    def render(self, dialect):
        return self.name

    def closure(self):
        name = self.name
        return lambda env: env[name]


class BinOp(Expr):
    """
    Binary operation.

    Integer division and modulo are only used on non-negative indices, where
    C truncation and Python flooring agree.
    """

    def __init__(self, op, lhs, rhs):
        assert op in OPERATORS, f"Unknown operator: {op}"
        self.op = op
        self.lhs = lhs
        self.rhs = rhs

    def render(self, dialect):
        op = '/' if self.op == '//' and dialect == CUDA else self.op
        return f"({self.lhs.render(dialect)} {op} {self.rhs.render(dialect)})"

    def closure(self):
        apply = OPERATORS[self.op]
        lhs, rhs = self.lhs.closure(), self.rhs.closure()
        return lambda env: apply(lhs(env), rhs(env))


class Neg(Expr):
    def __init__(self, operand):
        self.operand = operand

    def render(self, dialect):
        return f"(-{self.operand.render(dialect)})"

    def closure(self):
        operand = self.operand.closure()
        return lambda env: -operand(env)


class Call(Expr):
    """Call of a buffer accessor or a math intrinsic."""

    def __init__(self, name, args):
        assert name in ACCESSORS or name in FUNCTIONS, f"Unknown function: {name}"
        self.name = name
        self.args = [wrap(arg) for arg in args]

    def render(self, dialect):
        args = ', '.join(arg.render(dialect) for arg in self.args)
        if self.name in ACCESSORS:
            prefix = 'net.' if dialect == PYTHON else ''
            return f"{prefix}{self.name}({args})"
        return f"{INTRINSICS[dialect][self.name]}({args})"

    def closure(self):
        name = self.name
        args = [arg.closure() for arg in self.args]
        if name in ACCESSORS:
            # accessors are methods of the bound layer view passed as 'net'
            def accessor(env):
                return getattr(env['net'], name)(*[arg(env) for arg in args])
            return accessor

        function = FUNCTIONS[name]
        return lambda env: function(*[arg(env) for arg in args])


class Load(Expr):
    """Direct element read of a raw buffer (used by activations)."""

    def __init__(self, buffer, index):
        self.buffer = buffer
        self.index = wrap(index)

    def render(self, dialect):
        return f"{self.buffer}[{self.index.render(dialect)}]"

    def closure(self):
        buffer, index = self.buffer, self.index.closure()
        return lambda env: env[buffer][index(env)]


def var(name):
    return Var(name)


def call(name, *args):
    return Call(name, args)


def clamp(value, low, high):
    return Call('clamp', (value, low, high))


def exp(value):
    return Call('exp', (value,))


def fmax(a, b):
    return Call('fmax', (a, b))


def load(buffer, index):
    return Load(buffer, index)


# =============================================================================
# STATEMENTS
# =============================================================================

class Stmt:
    """
    Base class for formula statements.

    closure() returns a function that runs the statement against a
    local-variable dict.
    """

    def render(self, dialect, depth):
        raise NotImplementedError

    def closure(self):
        raise NotImplementedError


class Let(Stmt):
    """Declare a local variable."""

    def __init__(self, name, value, dtype=FLOAT):
        assert dtype in (INT, FLOAT), f"Unknown dtype: {dtype}"
        self.name = name
        self.value = wrap(value)
        self.dtype = dtype

    def render(self, dialect, depth):
        value = self.value.render(dialect)
        if dialect == PYTHON:
            return [f"{_indent(depth)}{self.name} = {value}"]
        return [f"{_indent(depth)}{self.dtype} {self.name} = {value};"]

    def closure(self):
        name, value = self.name, self.value.closure()

        def let(env):
            env[name] = value(env)
        return let


class Assign(Stmt):
    """Assign or update a local variable (op is '=' or '+=')."""

    def __init__(self, name, value, op='='):
        assert op in UPDATES, f"Unknown update: {op}"
        self.name = name
        self.value = wrap(value)
        self.op = op

    def render(self, dialect, depth):
        line = f"{_indent(depth)}{self.name} {self.op} {self.value.render(dialect)}"
        return [line if dialect == PYTHON else line + ';']

    def closure(self):
        name, value, update = self.name, self.value.closure(), UPDATES[self.op]

        def assign(env):
            result = value(env)
            env[name] = result if update is None else update(env[name], result)
        return assign


class Store(Stmt):
    """Write (or update, e.g. op '*=') one element of a raw buffer."""

    def __init__(self, buffer, index, value, op='='):
        assert op in UPDATES, f"Unknown update: {op}"
        self.buffer = buffer
        self.index = wrap(index)
        self.value = wrap(value)
        self.op = op

    def render(self, dialect, depth):
        line = (f"{_indent(depth)}{self.buffer}[{self.index.render(dialect)}] "
                f"{self.op} {self.value.render(dialect)}")
        return [line if dialect == PYTHON else line + ';']

    def closure(self):
        buffer, update = self.buffer, UPDATES[self.op]
        index, value = self.index.closure(), self.value.closure()

        def store(env):
            target = env[buffer]
            i = index(env)
            result = value(env)
            target[i] = result if update is None else update(target[i], result)
        return store


class Do(Stmt):
    """Evaluate a call for its side effect."""

    def __init__(self, expr):
        self.expr = expr

    def render(self, dialect, depth):
        line = f"{_indent(depth)}{self.expr.render(dialect)}"
        return [line if dialect == PYTHON else line + ';']

    def closure(self):
        expr = self.expr.closure()

        def do(env):
            expr(env)
        return do


class For(Stmt):
    """Counting loop over [start, stop)."""

    def __init__(self, name, start, stop, body):
        self.name = name
        self.start = wrap(start)
        self.stop = wrap(stop)
        self.body = list(body)

    def render(self, dialect, depth):
        start = self.start.render(dialect)
        stop = self.stop.render(dialect)
        if dialect == PYTHON:
            head = f"{_indent(depth)}for {self.name} in range({start}, {stop}):"
            return [head] + _block(self.body, dialect, depth + 1)
        head = f"{_indent(depth)}for (int {self.name} = {start}; {self.name} < {stop}; {self.name}++) {{"
        return [head] + _block(self.body, dialect, depth + 1) + [f"{_indent(depth)}}}"]

    def closure(self):
        name = self.name
        start, stop, body = self.start.closure(), self.stop.closure(), sequence(self.body)

        def loop(env):
            for value in range(start(env), stop(env)):
                env[name] = value
                body(env)
        return loop


class If(Stmt):
    def __init__(self, cond, body):
        self.cond = wrap(cond)
        self.body = list(body)

    def render(self, dialect, depth):
        cond = self.cond.render(dialect)
        if dialect == PYTHON:
            return [f"{_indent(depth)}if {cond}:"] + _block(self.body, dialect, depth + 1)
        return ([f"{_indent(depth)}if ({cond}) {{"]
                + _block(self.body, dialect, depth + 1)
                + [f"{_indent(depth)}}}"])

    def closure(self):
        cond, body = self.cond.closure(), sequence(self.body)

        def branch(env):
            if cond(env):
                body(env)
        return branch


class CheckFinite(Stmt):
    """Host-side assertion that a local variable is finite; no device code."""

    def __init__(self, name, message):
        self.name = name
        self.message = message

    def render(self, dialect, depth):
        if dialect == CUDA:
            return []
        return [f"{_indent(depth)}assert isfinite({self.name}), {self.message!r}"]

    def closure(self):
        name, message = self.name, self.message

        def check(env):
            assert math.isfinite(env[name]), message
        return check


def _block(body, dialect, depth):
    lines = render_lines(body, dialect, depth)
    if not lines and dialect == PYTHON:
        return [f"{_indent(depth)}pass"]
    return lines


def render_lines(body, dialect, depth=0):
    assert dialect in (PYTHON, CUDA), f"Unknown dialect: {dialect}"
    lines = []
    for stmt in body:
        lines.extend(stmt.render(dialect, depth))
    return lines


def render(body, dialect, depth=0):
    """Render a statement list as source text ('' for an empty body)."""
    lines = render_lines(body, dialect, depth)
    return '\n'.join(lines) + '\n' if lines else ''


def sequence(body):
    """One closure running a statement list in order."""
    steps = [stmt.closure() for stmt in body]

    def run(env):
        for step in steps:
            step(env)
    return run


# =============================================================================
# PYTHON PROCEDURES
# =============================================================================

@dataclass(frozen=True)
class ProcedureKey:
    """Procedures are identified by their rendered text; the tree rides along."""
    name: str
    params: tuple
    source: str
    body: tuple = field(compare=False, repr=False)


def _build_procedure(key):
    run = sequence(key.body)
    params = key.params

    def procedure(*args):
        assert len(args) == len(params), (
            f"{key.name} takes {len(params)} arguments, got {len(args)}")
        run(dict(zip(params, args)))

    procedure.__name__ = key.name
    return procedure


_procedures = KernelCache(_build_procedure, name='python')


def compile_procedure(name, params, body):
    """
    Turn a formula into a plain Python function of the given parameters.

    Procedures are cached by their rendered text, so layers with the same
    shape share one procedure.
    """
    body = tuple(body)
    return _procedures[ProcedureKey(name, tuple(params), render(body, PYTHON), body)]
