"""
Inference backends for the locally resident model.
The resource manager treats a backend as an opaque, blocking inference function.
"""

import gc
import logging
from typing import Optional

from ..models.runtime import LocalModelConfig

logger = logging.getLogger(__name__)


class ModelBackend:
    """Abstract base class for blocking model backends."""

    name = "backend"

    def load(self, config: LocalModelConfig) -> None:
        """Load weights for the given configuration."""
        raise NotImplementedError

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Generate a completion for the prompt."""
        raise NotImplementedError

    def unload(self) -> None:
        """Release the weights."""
        raise NotImplementedError

    def release_memory(self) -> None:
        """Release caches without unloading the weights."""
        gc.collect()

    def memory_footprint_mb(self) -> Optional[float]:
        """Measured footprint of the loaded weights, when the backend can report it."""
        return None

    def parameter_count(self) -> Optional[int]:
        return None


class HuggingFaceModelBackend(ModelBackend):
    """Causal language model served in-process with HuggingFace transformers."""

    name = "huggingface"

    def __init__(self, device: Optional[str] = None):
        self.device = device
        self._model = None
        self._tokenizer = None

    def load(self, config: LocalModelConfig) -> None:
        from transformers import AutoModelForCausalLM, AutoTokenizer
        import torch

        device = self.device or ("cuda" if torch.cuda.is_available() else "cpu")
        if config.memory_optimization:
            dtype = torch.float16 if device.startswith("cuda") else torch.bfloat16
        else:
            dtype = torch.float32

        logger.info(f"Loading {config.model_name} on {device} ({dtype})")
        tokenizer = AutoTokenizer.from_pretrained(config.model_name)
        model = AutoModelForCausalLM.from_pretrained(
            config.model_name,
            torch_dtype=dtype,
            low_cpu_mem_usage=True
        )
        model.to(device)
        model.eval()

        if tokenizer.pad_token_id is None:
            tokenizer.pad_token = tokenizer.eos_token

        self.device = device
        self._tokenizer = tokenizer
        self._model = model

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        import torch

        if self._model is None or self._tokenizer is None:
            raise RuntimeError("Model weights are not loaded")

        inputs = self._tokenizer(prompt, return_tensors="pt").to(self.device)
        generation_kwargs = {
            "max_new_tokens": max_tokens,
            "pad_token_id": self._tokenizer.pad_token_id,
        }
        if temperature > 0:
            generation_kwargs.update(do_sample=True, temperature=temperature)
        else:
            generation_kwargs["do_sample"] = False

        with torch.no_grad():
            outputs = self._model.generate(**inputs, **generation_kwargs)

        # Decode only the newly generated tokens
        new_tokens = outputs[0][inputs["input_ids"].shape[1]:]
        return self._tokenizer.decode(new_tokens, skip_special_tokens=True)

    def unload(self) -> None:
        self._model = None
        self._tokenizer = None
        self.release_memory()

    def release_memory(self) -> None:
        import torch

        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    def memory_footprint_mb(self) -> Optional[float]:
        if self._model is None:
            return None
        return self._model.get_memory_footprint() / (1024 * 1024)

    def parameter_count(self) -> Optional[int]:
        if self._model is None:
            return None
        return self._model.num_parameters()
