import numpy as np
import pytest

from llamacore.alloc import Pointer, cpu_allocator
from llamacore.base import DeviceType, InferenceError
from llamacore.kernels import add_kernel_cpu
from llamacore.layer import Layer, LayerParam, LayerType
from llamacore.tensor import Tensor


def _tensor(values):
    tensor = Tensor([len(values)], True, cpu_allocator())
    tensor.array()[:] = values
    return tensor


class _Adder(Layer):
    def __init__(self, size):
        super().__init__(DeviceType.CPU, LayerType.ADD, "Adder")
        self.reset_input_size(2)
        self.reset_output_size(1)
        self.size = size

    def run(self):
        add_kernel_cpu(self.get_input(0), self.get_input(1), self.get_output(0), self.size)


def _param_layer(weights=1):
    layer = LayerParam(DeviceType.CPU, LayerType.MATMUL, "Param")
    layer.reset_weight_size(weights)
    return layer


def test_constructor_keeps_identity():
    layer = Layer(DeviceType.CUDA, LayerType.ROPE, "RoPE")
    assert layer.device_type is DeviceType.CUDA
    assert layer.layer_type is LayerType.ROPE
    assert layer.layer_name == "RoPE"
    assert layer.input_size == 0
    assert layer.output_size == 0


def test_layer_type_values_carried_by_layers():
    unknown = Layer(DeviceType.CPU, LayerType(0), "Unknown")
    swiglu = Layer(DeviceType.CPU, LayerType(10), "SwiGLU")
    assert unknown.layer_type is LayerType.UNKNOWN
    assert swiglu.layer_type is LayerType.SWIGLU


def test_reset_sizes_add_empty_slots_and_shrink():
    layer = Layer(DeviceType.CPU, LayerType.ADD)
    layer.reset_input_size(3)
    layer.reset_output_size(2)
    assert layer.input_size == 3
    assert layer.output_size == 2
    assert layer.get_input(2).is_empty()
    layer.reset_input_size(1)
    assert layer.input_size == 1
    with pytest.raises(IndexError):
        layer.get_input(1)


def test_set_input_shares_memory_but_not_shape():
    layer = Layer(DeviceType.CPU, LayerType.ADD)
    layer.reset_input_size(1)
    tensor = _tensor([1.0, 2.0])
    layer.set_input(0, tensor)
    tensor.array()[0] = 9.0
    assert layer.get_input(0).get(0) == 9.0
    tensor.reset([5])
    assert layer.get_input(0).dims == (2,)


@pytest.mark.parametrize("idx", [-1, 1])
def test_slot_index_out_of_range(idx):
    layer = Layer(DeviceType.CPU, LayerType.ADD)
    layer.reset_input_size(1)
    layer.reset_output_size(1)
    with pytest.raises(IndexError):
        layer.set_input(idx, _tensor([1.0]))
    with pytest.raises(IndexError):
        layer.get_output(idx)


def test_forward_sets_inputs_and_output_then_runs():
    layer = _Adder(3)
    out = _tensor([0.0, 0.0, 0.0])
    layer.forward(_tensor([1.0, 2.0, 3.0]), _tensor([10.0, 20.0, 30.0]), out)
    assert out.array().tolist() == [11.0, 22.0, 33.0]


def test_forward_without_arguments_uses_current_slots():
    layer = _Adder(2)
    out = _tensor([0.0, 0.0])
    layer.set_input(0, _tensor([1.0, 1.0]))
    layer.set_input(1, _tensor([2.0, 3.0]))
    layer.set_output(0, out)
    layer.forward()
    assert out.array().tolist() == [3.0, 4.0]


def test_forward_rejects_single_argument():
    with pytest.raises(TypeError):
        _Adder(1).forward(_tensor([1.0]))


def test_forward_with_too_many_inputs_for_slots():
    layer = _Adder(1)
    with pytest.raises(IndexError):
        layer.forward(_tensor([1.0]), _tensor([1.0]), _tensor([1.0]), _tensor([0.0]))


def test_plain_layer_has_no_computation_or_weights():
    layer = Layer(DeviceType.CPU, LayerType.UNKNOWN, "Plain")
    with pytest.raises(InferenceError):
        layer.run()
    with pytest.raises(InferenceError):
        layer.set_weight(0, _tensor([1.0]))


def test_to_cuda_moves_filled_slots_and_skips_empty():
    layer = Layer(DeviceType.CUDA, LayerType.ADD)
    layer.reset_input_size(2)
    layer.set_input(0, _tensor([4.0, 5.0]))
    layer.to_cuda()
    moved = layer.get_input(0)
    assert moved.device_type is DeviceType.CUDA
    assert moved.array().tolist() == [4.0, 5.0]
    assert layer.get_input(1).is_empty()


def test_set_weight_from_pointer_borrows_memory():
    memory = bytearray(np.arange(1, 7, dtype=np.float32).tobytes())
    layer = _param_layer()
    layer.set_weight(0, Pointer(memory), [2, 3], DeviceType.CPU)
    weight = layer.get_weight(0)
    assert weight.dims == (2, 3)
    assert weight.device_type is DeviceType.CPU
    assert weight.buffer.is_external
    assert weight.array().tolist() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    memory[0:4] = np.float32(7.0).tobytes()
    assert weight.get(0) == 7.0


def test_set_weight_from_pointer_with_unknown_device():
    memory = bytearray(8)
    layer = _param_layer()
    layer.set_weight(0, Pointer(memory), [2])
    assert layer.get_weight(0).device_type is DeviceType.UNKNOWN


def test_set_weight_null_pointer_raises():
    with pytest.raises(InferenceError):
        _param_layer().set_weight(0, None, [2], DeviceType.CPU)


def test_set_weight_tensor_on_same_device():
    layer = _param_layer()
    layer.set_weight(0, _tensor([1.5, 2.5]))
    assert layer.get_weight(0).array().tolist() == [1.5, 2.5]


def test_set_weight_tensor_on_other_device_raises():
    layer = LayerParam(DeviceType.CUDA, LayerType.MATMUL)
    layer.reset_weight_size(1)
    with pytest.raises(InferenceError):
        layer.set_weight(0, _tensor([1.0]))


def test_set_weight_empty_tensor_is_ignored():
    layer = _param_layer()
    layer.set_weight(0, Tensor())
    assert layer.get_weight(0).is_empty()


def test_set_weight_index_out_of_range():
    with pytest.raises(IndexError):
        _param_layer(1).set_weight(1, _tensor([1.0]))


def test_weight_size_follows_reset():
    layer = _param_layer(3)
    assert layer.weight_size == 3
    layer.reset_weight_size(1)
    assert layer.weight_size == 1


def test_param_to_cuda_moves_weights():
    layer = _param_layer()
    layer.set_weight(0, _tensor([3.0, 4.0]))
    layer.to_cuda()
    weight = layer.get_weight(0)
    assert weight.device_type is DeviceType.CUDA
    assert weight.array().tolist() == [3.0, 4.0]


def test_param_to_cuda_with_empty_weight_raises():
    with pytest.raises(InferenceError):
        _param_layer().to_cuda()