# llamacore

The building blocks for running a Llama-style decoder one token at a time on the CPU. It provides memory, tensors, numeric kernels and layers. It does not include a model that ties them together.

## What is in it

- **`llamacore.base`** defines `DeviceType` (`UNKNOWN`, `CPU`, `CUDA`) and `MemcpyKind`. It also defines `InferenceError`, the error the package raises for invalid use.
- **`llamacore.alloc`** handles memory.
  - `Pointer` is a byte offset into a block of memory, with `offset_by` and `view`.
  - `CPUDeviceAllocator` is a plain host allocator.
  - `CUDADeviceAllocator` is a caching block allocator. Its memory is simulated with host byte arrays. It rounds each request with `round_size` to a multiple of 512 bytes. Free blocks sit in small and large `MemBlockPool`s, ordered by size and then by address. A request takes the best-fitting block and splits off any remainder. Neighbouring free blocks are merged when a block is released. `release_cached_memory` drops free blocks that span a whole segment.
  - `cpu_allocator()` and `cuda_allocator()` return shared instances.
- **`llamacore.buffer.Buffer`** is a sized region of memory. It either comes from an allocator or is borrowed from the caller.
  - `copy_from` copies as many bytes as both buffers hold.
  - `close` hands owned memory back to the allocator. A `Buffer` is also a context manager.
- **`llamacore.tensor.Tensor`** is a shaped view of 4-byte elements over a buffer.
  - Shape: `reshape`, `reset`, `strides`, `get_dim`.
  - Memory: `assign`, `clone`, and `to_cpu` / `to_cuda` to move between devices.
  - Data access: `array(dtype)` gives a writable NumPy view, and `get` / `set` read and write one element.
  - `slice_kv_cache` returns key and value tensors that view one position of one layer's cache.
- **`llamacore.config.LlamaModelConfig`** is a frozen dataclass of model dimensions. Its defaults are:
  - vocabulary 128256
  - hidden size 3072
  - head dimension 128
  - 28 layers
  - 24 attention heads over 8 key/value heads
  - maximum length 1024
- **`llamacore.kernels`** holds the CPU math. Each kernel writes its result in place into its output tensor.
  - `add_kernel_cpu`
  - `matmul_kernel_cpu`
  - `softmax_kernel_cpu`
  - `attention_output_kernel`
  - `mha_kernel_cpu`, which is grouped-query attention
  - `rmsnorm_kernel_cpu`
  - `rope_cache_cal` and `rope_kernel_cpu`
  - `swiglu_kernel_cpu`
- **`llamacore.layer`** defines `Layer` and `LayerParam`, which hold input, output and weight slots.
  - `forward(*tensors)` sets inputs 0, 1, … and then the output, and calls `run`.
  - `LayerParam.set_weight` accepts either a tensor, or a pointer plus `dims`.
- **`llamacore.ops`** holds the concrete layers:
  - `VecAddLayer`
  - `MatmulLayer`
  - `MultiHeadAttention`, which needs `set_pos` and `set_layer_index`
  - `RmsNormLayer`
  - `RoPELayer`, whose inputs are query, key, position and sine table, with the cosine table in the output slot
  - `SwigluLayer`
  - `ArgmaxLayer`, which writes the index of the largest logit into an int32 tensor
- **`llamacore.weights.RawModelData`** memory-maps a flat float32 weight file read-only.
  - `RawModelData.open(path)` opens the file.
  - `weight(offset)` returns a `Pointer` to element `offset`.
  - `close` releases the mapping. `RawModelData` is also a context manager.

## Install

```
pip install .
```

For tests:

```
pip install .[test]
pytest
```

## Example

```python
from llamacore.alloc import cpu_allocator
from llamacore.base import DeviceType
from llamacore.ops import RmsNormLayer
from llamacore.tensor import Tensor

alloc = cpu_allocator()
x = Tensor([4], True, alloc)
w = Tensor([4], True, alloc)
out = Tensor([4], True, alloc)
x.array()[:] = [1.0, 2.0, 3.0, 4.0]
w.array()[:] = 1.0

norm = RmsNormLayer(DeviceType.CPU, 4, 1e-5)
norm.set_weight(0, w)
norm.forward(x, out)
print(out.array())
```

Weights from a file can be borrowed without copying. Here `path` is the weight file and `offset` is an element offset into it:

```python
from llamacore.weights import RawModelData

with RawModelData.open(path) as data:
    norm.set_weight(0, data.weight(offset), [4], DeviceType.CPU)
```

## Errors

Invalid use raises `llamacore.base.InferenceError`. Examples are a missing pointer, an out-of-range element or dimension index, an unknown device, or a weight on the wrong device. Out-of-range input, output or weight slot indices on a layer raise `IndexError`.

## What it does not do

- There is no tokenizer and no embedding lookup layer.
- There is no model that assembles the layers. That also means no generation loop and no command-line program: you wire the layers together yourself.
- `LlamaModelConfig` is not read from any file.
- There are no GPU kernels. `CUDADeviceAllocator` only simulates device memory in host memory. Any layer whose device type is not `DeviceType.CPU` raises `InferenceError` when run.