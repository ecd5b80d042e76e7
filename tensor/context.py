"""Layer resource context: weights, scratch tensors and I/O buffers.

A layer talks to two views of the same registry. During setup it receives an
`InitContext` and requests named weights and scratch tensors by shape,
getting back typed handles. At run time a `RunContext` materializes those
requests and hands out the buffers behind each handle. Scratch tensors carry
a leading batch axis and can be resized when the batch changes.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import torch

from .init import check_initializer, initialize_
from .regularization import check_regularizer, regularization_grad_, regularization_loss
from .shape import assert_shape, with_batch

logger = logging.getLogger(__name__)

Shape = Tuple[int, ...]


class Lifespan(enum.Enum):
    FORWARD = "forward"
    ITERATION = "iteration"
    MAX = "max"


@dataclass(frozen=True)
class InputHandle:
    index: int
    name: str


@dataclass(frozen=True)
class WeightHandle:
    index: int
    name: str


@dataclass(frozen=True)
class TensorHandle:
    index: int
    name: str


@dataclass
class WeightSpec:
    shape: Shape
    initializer: str
    regularizer: str
    regularizer_constant: float
    name: str
    trainable: bool = True


@dataclass
class TensorSpec:
    shape: Shape
    name: str
    initializer: str = "none"
    lifespan: Lifespan = Lifespan.ITERATION
    with_grad: bool = False


def _same_device(a: torch.device, b: torch.device) -> bool:
    return a.type == b.type and (a.index is None or b.index is None or a.index == b.index)


def _as_shape(shape: Sequence[int]) -> Shape:
    out = tuple(int(s) for s in shape)
    if any(s <= 0 for s in out):
        raise ValueError(f"shape extents must be positive, got {out}")
    return out


class InitContext:
    def __init__(
        self,
        name: str,
        input_shapes: Sequence[Sequence[int]],
        *,
        dtype: torch.dtype = torch.float32,
        device: torch.device | str | None = None,
    ):
        self.name = str(name)
        self.input_shapes: List[Shape] = [_as_shape(s) for s in input_shapes]
        self.dtype = dtype
        self.device = torch.device(device) if device is not None else torch.device("cpu")
        self.weight_specs: List[WeightSpec] = []
        self.tensor_specs: List[TensorSpec] = []
        self.output_shapes: List[Shape] = []

    @property
    def num_inputs(self) -> int:
        return len(self.input_shapes)

    def input_handle(self, index: int, name: str) -> InputHandle:
        if not 0 <= index < self.num_inputs:
            raise ValueError(f"{self.name}: input index {index} out of range for {self.num_inputs} inputs")
        return InputHandle(index, name)

    def request_weight(
        self,
        shape: Sequence[int],
        initializer: str,
        regularizer: str,
        regularizer_constant: float,
        name: str,
        trainable: bool = True,
    ) -> WeightHandle:
        if any(s.name == name for s in self.weight_specs):
            raise ValueError(f"{self.name}: weight {name!r} already requested")
        spec = WeightSpec(
            shape=_as_shape(shape),
            initializer=check_initializer(initializer),
            regularizer=check_regularizer(regularizer),
            regularizer_constant=float(regularizer_constant),
            name=name,
            trainable=bool(trainable),
        )
        self.weight_specs.append(spec)
        logger.debug("%s: weight %s %s", self.name, name, spec.shape)
        return WeightHandle(len(self.weight_specs) - 1, name)

    def request_tensor(
        self,
        shape: Sequence[int],
        name: str,
        initializer: str = "none",
        lifespan: Lifespan = Lifespan.ITERATION,
        with_grad: bool = False,
    ) -> TensorHandle:
        if any(s.name == name for s in self.tensor_specs):
            raise ValueError(f"{self.name}: tensor {name!r} already requested")
        spec = TensorSpec(
            shape=_as_shape(shape),
            name=name,
            initializer=check_initializer(initializer),
            lifespan=lifespan,
            with_grad=bool(with_grad),
        )
        self.tensor_specs.append(spec)
        logger.debug("%s: tensor %s %s (%s)", self.name, name, spec.shape, lifespan.value)
        return TensorHandle(len(self.tensor_specs) - 1, name)

    def set_output_shapes(self, shapes: Sequence[Sequence[int]]) -> None:
        self.output_shapes = [_as_shape(s) for s in shapes]


class RunContext:
    """Run-time buffers for one layer instance.

    Inputs are bound per step with `set_inputs`; output and outgoing-derivative
    buffers follow the inputs' batch size. Scratch tensors keep the batch they
    were last sized for until `update_tensor` is called.
    """

    def __init__(self, init: InitContext, *, generator: torch.Generator | None = None):
        if not init.output_shapes:
            raise ValueError(f"{init.name}: output shapes were never declared")
        self.name = init.name
        self.dtype = init.dtype
        self.device = init.device
        self.input_shapes = list(init.input_shapes)
        self.output_shapes = list(init.output_shapes)
        self.weight_specs = [WeightSpec(**vars(s)) for s in init.weight_specs]
        self.tensor_specs = [TensorSpec(**vars(s)) for s in init.tensor_specs]
        self.batch = self.output_shapes[0][0]

        self._weights: List[torch.Tensor] = []
        self._weight_grads: List[torch.Tensor] = []
        for spec in self.weight_specs:
            w = torch.zeros(spec.shape, dtype=self.dtype, device=self.device)
            initialize_(w, spec.initializer, generator=generator)
            self._weights.append(w)
            self._weight_grads.append(torch.zeros_like(w))

        self._tensors: List[torch.Tensor] = []
        self._tensor_grads: List[Optional[torch.Tensor]] = []
        for spec in self.tensor_specs:
            t, g = self._alloc_tensor(spec)
            self._tensors.append(t)
            self._tensor_grads.append(g)

        self._inputs: List[Optional[torch.Tensor]] = [None] * len(self.input_shapes)
        self._incoming: List[Optional[torch.Tensor]] = [None] * len(self.output_shapes)
        self._outputs: List[torch.Tensor] = []
        self._outgoing: List[torch.Tensor] = []
        self._alloc_io(self.batch)

    @classmethod
    def from_init(cls, init: InitContext, generator: torch.Generator | None = None) -> "RunContext":
        return cls(init, generator=generator)

    # -------- Helpers ---------
    def _alloc_tensor(self, spec: TensorSpec) -> tuple[torch.Tensor, Optional[torch.Tensor]]:
        t = torch.zeros(spec.shape, dtype=self.dtype, device=self.device)
        initialize_(t, spec.initializer)
        g = torch.zeros_like(t) if spec.with_grad else None
        return t, g

    def _alloc_io(self, batch: int) -> None:
        self._outputs = [
            torch.zeros(with_batch(s, batch), dtype=self.dtype, device=self.device) for s in self.output_shapes
        ]
        self._outgoing = [
            torch.zeros(with_batch(s, batch), dtype=self.dtype, device=self.device) for s in self.input_shapes
        ]
        self._incoming = [None] * len(self.output_shapes)
        self.batch = int(batch)

    # -------- I/O ---------
    @property
    def num_inputs(self) -> int:
        return len(self.input_shapes)

    def set_inputs(self, *tensors: torch.Tensor) -> None:
        if len(tensors) != self.num_inputs:
            raise ValueError(f"{self.name}: expected {self.num_inputs} inputs, got {len(tensors)}")
        batch = tensors[0].size(0) if tensors[0].ndim > 0 else 0
        for i, (t, shape) in enumerate(zip(tensors, self.input_shapes)):
            if t.ndim != len(shape) or tuple(t.shape[1:]) != shape[1:]:
                raise ValueError(f"{self.name}: input[{i}] shape {tuple(t.shape)} does not match (B,{','.join(map(str, shape[1:]))})")
            if t.size(0) != batch:
                raise ValueError(f"{self.name}: input[{i}] batch {t.size(0)} != {batch}")
            if t.dtype != self.dtype or not _same_device(t.device, self.device):
                raise ValueError(
                    f"{self.name}: input[{i}] is {t.dtype} on {t.device}, expected {self.dtype} on {self.device}"
                )
        if batch != self.batch:
            logger.debug("%s: io buffers resized for batch %d -> %d", self.name, self.batch, batch)
            self._alloc_io(batch)
        self._inputs = list(tensors)

    def get_input(self, handle: InputHandle | int) -> torch.Tensor:
        idx = handle.index if isinstance(handle, InputHandle) else int(handle)
        t = self._inputs[idx]
        if t is None:
            raise RuntimeError(f"{self.name}: input[{idx}] has not been set")
        return t

    def get_output(self, index: int = 0) -> torch.Tensor:
        return self._outputs[index]

    def set_incoming_derivative(self, derivative: torch.Tensor, index: int = 0) -> None:
        assert_shape(derivative, tuple(self._outputs[index].shape), f"{self.name}: incoming derivative")
        self._incoming[index] = derivative

    def get_incoming_derivative(self, index: int = 0) -> torch.Tensor:
        d = self._incoming[index]
        if d is None:
            raise RuntimeError(f"{self.name}: incoming derivative [{index}] has not been set")
        return d

    def get_outgoing_derivative(self, handle: InputHandle | int) -> torch.Tensor:
        idx = handle.index if isinstance(handle, InputHandle) else int(handle)
        return self._outgoing[idx]

    # -------- Weights ---------
    def _weight_index(self, handle: WeightHandle) -> int:
        if not isinstance(handle, WeightHandle):
            raise TypeError(f"expected WeightHandle, got {type(handle).__name__}")
        return handle.index

    def get_weight(self, handle: WeightHandle) -> torch.Tensor:
        return self._weights[self._weight_index(handle)]

    def get_weight_grad(self, handle: WeightHandle) -> torch.Tensor:
        return self._weight_grads[self._weight_index(handle)]

    def weights(self) -> Iterator[tuple[WeightSpec, torch.Tensor, torch.Tensor]]:
        yield from zip(self.weight_specs, self._weights, self._weight_grads)

    def zero_grad(self) -> None:
        for g in self._weight_grads:
            g.zero_()

    def regularization_loss(self) -> torch.Tensor:
        total = torch.zeros((), dtype=torch.float32, device=self.device)
        for spec, w, _ in self.weights():
            if spec.trainable:
                total = total + regularization_loss(w, spec.regularizer, spec.regularizer_constant)
        return total

    def apply_regularization(self) -> None:
        for spec, w, g in self.weights():
            if spec.trainable:
                regularization_grad_(g, w, spec.regularizer, spec.regularizer_constant)

    # -------- Scratch tensors ---------
    def _tensor_index(self, handle: TensorHandle) -> int:
        if not isinstance(handle, TensorHandle):
            raise TypeError(f"expected TensorHandle, got {type(handle).__name__}")
        return handle.index

    def get_tensor(self, handle: TensorHandle) -> torch.Tensor:
        return self._tensors[self._tensor_index(handle)]

    def get_tensor_grad(self, handle: TensorHandle) -> torch.Tensor:
        g = self._tensor_grads[self._tensor_index(handle)]
        if g is None:
            raise ValueError(f"{self.name}: tensor {handle.name!r} was requested without a gradient buffer")
        return g

    def update_tensor(self, handle: TensorHandle, batch: int) -> None:
        """Reallocate a scratch tensor (and its gradient mirror) for a new batch."""
        idx = self._tensor_index(handle)
        spec = self.tensor_specs[idx]
        spec.shape = with_batch(spec.shape, batch)
        self._tensors[idx], self._tensor_grads[idx] = self._alloc_tensor(spec)
        logger.debug("%s: tensor %s resized to %s", self.name, spec.name, spec.shape)
