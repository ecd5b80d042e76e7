from .activations import Activation, tanh_prime, sigmoid_prime, softmax_prime, exp_prime
from .context import (
    InitContext,
    RunContext,
    Lifespan,
    InputHandle,
    WeightHandle,
    TensorHandle,
)
from .matmul import (
    dot,
    dot_deriv_wrt_1,
    dot_deriv_wrt_2,
    dot_batched,
    dot_batched_deriv_wrt_1,
    dot_batched_deriv_wrt_2,
)

__all__ = [
    "Activation",
    "tanh_prime",
    "sigmoid_prime",
    "softmax_prime",
    "exp_prime",
    "InitContext",
    "RunContext",
    "Lifespan",
    "InputHandle",
    "WeightHandle",
    "TensorHandle",
    "dot",
    "dot_deriv_wrt_1",
    "dot_deriv_wrt_2",
    "dot_batched",
    "dot_batched_deriv_wrt_1",
    "dot_batched_deriv_wrt_2",
]
