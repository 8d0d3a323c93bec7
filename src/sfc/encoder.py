import copy
import math
from typing import List, Optional, Sequence, Tuple

import torch
from torch import Tensor

from .buffers import (
    create_double_buffer,
    create_double_buffer_2d,
    create_double_buffer_3d,
    fill,
    random_uniform,
)
from .const import DTYPE, INDEX_DTYPE
from .hyperparameters import SparseFeaturesChunkDesc, VisibleLayerDesc
from .kernels import KERNEL_NAMES
from .program import ComputeProgram
from .types import VisibleLayer


class SparseFeaturesChunk:
    """
    Online sparse-coding encoder with chunk winner-take-all competition.

    Turns one or more dense 2D input grids into a binary hidden grid in which
    every chunk (a rectangular tile of the hidden grid) has exactly one
    active unit, and continually adapts its receptive-field weights toward
    the inputs its winners respond to.

    Every mutable grid is a ``DoubleBuffer``: stages read ``back`` and write
    ``front``. A timestep is driven externally as

        activate(...) -> [consume hidden_states] -> learn(...) -> step_end()

    ``step_end`` is the only point at which the step's results become the
    committed ("previous") state seen by the next ``activate``.

    Parameters
    ----------
    desc : SparseFeaturesChunkDesc
        Encoder configuration, including one ``VisibleLayerDesc`` per input.
        The encoder keeps its own deep copy, so encoders built from one desc
        never share configuration.
    program : ComputeProgram, optional
        Kernel registry. A program holding the desc's backend is created if
        None.
    generator : torch.Generator, optional
        Source for weight initialization. Seeded from ``desc.seed`` if None.

    Attributes
    ----------
    visible_layers : list of VisibleLayer
        Per-input derived input, sample history, weights and scale factors.
    hidden_states : Tensor [hh, hw]
        Committed binary winner indicator.
    hidden_activations : Tensor [hh, hw]
        Committed continuous competition score.
    chunk_winners : Tensor [chunks_y, chunks_x, 2]
        Committed (dx, dy) offset of each chunk's winner.

    Raises
    ------
    RuntimeError
        If the program cannot provide every pipeline kernel.
    """

    def __init__(
        self,
        desc: SparseFeaturesChunkDesc,
        program: Optional[ComputeProgram] = None,
        generator: Optional[torch.Generator] = None,
    ):
        # Owned copy: loading state rewrites desc fields in place
        self.desc = copy.deepcopy(desc)
        self.device = torch.device(desc.device)

        if program is None:
            program = ComputeProgram()
            if not program.load_sparse_features_kernels(desc.backend):
                raise RuntimeError(f"Could not load {desc.backend!r} kernels.")
        self._resolve_kernels(program)

        if generator is None:
            generator = torch.Generator(device="cpu").manual_seed(desc.seed)

        self.visible_layers: List[VisibleLayer] = [
            self._create_visible_layer(vld, generator)
            for vld in self.visible_layer_descs
        ]

        self._hidden_states = create_double_buffer_2d(self.hidden_size, device=self.device)
        self._hidden_activations = create_double_buffer_2d(
            self.hidden_size, device=self.device
        )
        self._hidden_summation_temp = create_double_buffer_2d(
            self.hidden_size, device=self.device
        )
        self._chunk_winners = create_double_buffer_2d(
            self.chunk_grid, channels=2, device=self.device, dtype=INDEX_DTYPE
        )

        # Default active pattern: each chunk's origin, consistent with zeroed winners
        chunk_w, chunk_h = self.chunk_size
        self._hidden_states.back[::chunk_h, ::chunk_w] = 1.0

    def _resolve_kernels(self, program: ComputeProgram):
        missing = [name for name in KERNEL_NAMES if not program.has_kernel(name)]
        if missing:
            raise RuntimeError(f"Kernel program is missing kernels: {missing}")
        self._derive_inputs_kernel = program.load_kernel("sfc_derive_inputs")
        self._add_sample_kernel = program.load_kernel("sfc_add_sample")
        self._stimulus_kernel = program.load_kernel("sfc_stimulus")
        self._activate_kernel = program.load_kernel("sfc_activate")
        self._inhibit_kernel = program.load_kernel("sfc_inhibit")
        self._inhibit_other_kernel = program.load_kernel("sfc_inhibit_other")
        self._learn_weights_kernel = program.load_kernel("sfc_learn_weights")

    def _create_visible_layer(
        self, vld: VisibleLayerDesc, generator: torch.Generator
    ) -> VisibleLayer:
        hidden_w, hidden_h = self.hidden_size
        chunks_x, chunks_y = self.chunk_grid
        visible_w, visible_h = vld.size

        hidden_to_visible = (visible_w / hidden_w, visible_h / hidden_h)
        visible_to_hidden = (hidden_w / visible_w, hidden_h / visible_h)
        chunk_to_visible = (visible_w / chunks_x, visible_h / chunks_y)
        reverse_radii = (
            int(math.ceil(visible_to_hidden[0] * vld.radius) + 1),
            int(math.ceil(visible_to_hidden[1] * vld.radius) + 1),
        )

        num_weights = vld.window_area * self.num_samples
        # Unit-major so each hidden unit's weights are contiguous
        weights = create_double_buffer((hidden_h, hidden_w, num_weights), device=self.device)
        random_uniform(weights.back, self.desc.init_weight_range, generator)

        return VisibleLayer(
            derived_input=create_double_buffer_2d(vld.size, channels=2, device=self.device),
            samples=create_double_buffer_3d(
                (visible_w, visible_h, self.num_samples), device=self.device
            ),
            weights=weights,
            hidden_to_visible=hidden_to_visible,
            visible_to_hidden=visible_to_hidden,
            chunk_to_visible=chunk_to_visible,
            reverse_radii=reverse_radii,
        )

    @property
    def visible_layer_descs(self) -> List[VisibleLayerDesc]:
        return self.desc.visible_layer_descs

    @property
    def hidden_size(self) -> Tuple[int, int]:
        return self.desc.hidden_size

    @property
    def chunk_size(self) -> Tuple[int, int]:
        return self.desc.chunk_size

    @property
    def chunk_grid(self) -> Tuple[int, int]:
        return self.desc.chunk_grid

    @property
    def num_samples(self) -> int:
        return self.desc.num_samples

    @property
    def hidden_states(self) -> Tensor:
        return self._hidden_states.back

    @property
    def hidden_activations(self) -> Tensor:
        return self._hidden_activations.back

    @property
    def chunk_winners(self) -> Tensor:
        return self._chunk_winners.back

    def _prepare_input(self, state, vld: VisibleLayerDesc, index: int) -> Tensor:
        state = torch.as_tensor(state, dtype=DTYPE, device=self.device)
        expected = (vld.size[1], vld.size[0])
        if tuple(state.shape) != expected:
            raise ValueError(
                f"Visible state {index} has shape {tuple(state.shape)}, expected (height, width) = {expected}."
            )
        return state.contiguous()

    @torch.no_grad()
    def activate(
        self,
        visible_states: Sequence[Tensor],
        predictions_prev: Optional[Tensor] = None,
        generator: Optional[torch.Generator] = None,
    ):
        """
        Encode the current inputs into a new chunk-competitive hidden state.

        For each input in configured order: derive (average, rate), push the
        rate into the sample history, and add the weighted receptive-field
        stimulus to the running hidden accumulator. The total is combined
        with the previous hidden state and each chunk keeps its single best
        unit. Weights are not touched.

        Parameters
        ----------
        visible_states : sequence of Tensor [vh, vw]
            One raw grid per configured input.
        predictions_prev : Tensor, optional
            Previous-timestep prediction from the enclosing hierarchy. Unused
            by chunk competition; accepted for interface compatibility.
        generator : torch.Generator, optional
            Unused by chunk competition.
        """
        if len(visible_states) != len(self.visible_layers):
            raise ValueError(
                f"Expected {len(self.visible_layers)} visible states, got {len(visible_states)}."
            )

        fill(self._hidden_summation_temp.back, 0.0)

        for vli, (vl, vld) in enumerate(zip(self.visible_layers, self.visible_layer_descs)):
            state = self._prepare_input(visible_states[vli], vld, vli)

            self._derive_inputs_kernel(
                state, vl.derived_input.back, vl.derived_input.front, vld.lambda_
            )
            self._add_sample_kernel(vl.derived_input.front, vl.samples.back, vl.samples.front)
            self._stimulus_kernel(
                vl.samples.front,
                self._hidden_summation_temp.back,
                self._hidden_summation_temp.front,
                vl.weights.back,
                vl.hidden_to_visible,
                vld.radius,
                vld.ignore_middle,
            )

            self._hidden_summation_temp.swap()

        self._activate_kernel(
            self._hidden_summation_temp.back,
            self._hidden_states.back,
            self._hidden_activations.front,
            self.desc.state_bias,
        )
        self._inhibit_kernel(
            self._hidden_activations.front,
            self._hidden_states.front,
            self._chunk_winners.front,
            self.chunk_size,
        )

    @torch.no_grad()
    def inhibit(
        self,
        activations: Tensor,
        states: Optional[Tensor] = None,
        generator: Optional[torch.Generator] = None,
    ) -> Tensor:
        """
        Run chunk competition on a caller-supplied activation map.

        Only ``states`` is written; the encoder's own buffers, including its
        chunk-winner record, are left alone.

        Returns
        -------
        Tensor [hh, hw]
            The binary state map (``states`` if given, else a new tensor).
        """
        expected = (self.hidden_size[1], self.hidden_size[0])
        activations = torch.as_tensor(activations, dtype=DTYPE, device=self.device)
        if tuple(activations.shape) != expected:
            raise ValueError(
                f"Activations have shape {tuple(activations.shape)}, expected {expected}."
            )
        if states is None:
            states = torch.zeros(expected, dtype=DTYPE, device=self.device)
        elif tuple(states.shape) != expected:
            raise ValueError(f"States have shape {tuple(states.shape)}, expected {expected}.")

        self._inhibit_other_kernel(activations.contiguous(), states, self.chunk_size)
        return states

    @torch.no_grad()
    def learn(
        self,
        predictions_prev: Optional[Tensor] = None,
        generator: Optional[torch.Generator] = None,
    ):
        """
        Adapt every input's weights from the current and previous winners.

        Must follow ``activate`` and precede ``step_end`` of the same
        timestep. Updates are computed from ``weights.back`` into
        ``weights.front`` and then swapped in.
        """
        for vl, vld in zip(self.visible_layers, self.visible_layer_descs):
            self._learn_weights_kernel(
                self._chunk_winners.front,
                self._chunk_winners.back,
                vl.samples.front,
                vl.weights.back,
                vl.weights.front,
                vl.hidden_to_visible,
                self.chunk_size,
                vld.radius,
                vld.weight_alpha,
            )

            vl.weights.swap()

    def step_end(self):
        self._hidden_states.swap()
        self._hidden_activations.swap()
        self._chunk_winners.swap()

        for vl in self.visible_layers:
            vl.derived_input.swap()
            vl.samples.swap()

    @torch.no_grad()
    def clear_memory(self):
        """
        Zero the committed hidden state, activation, derived inputs and
        sample histories. Weights are kept. Unlike construction, the hidden
        state is reset to all zeros rather than the default active pattern.
        """
        fill(self._hidden_states.back, 0.0)
        fill(self._hidden_activations.back, 0.0)

        for vl in self.visible_layers:
            fill(vl.derived_input.back, 0.0)
            fill(vl.samples.back, 0.0)

    def step(self, visible_states: Sequence[Tensor], learn: bool = True) -> Tensor:
        """Run one full timestep and return a copy of the committed hidden state."""
        self.activate(visible_states)
        if learn:
            self.learn()
        self.step_end()
        return self.hidden_states.clone()

    def double_buffers(self):
        return {
            "hidden_states": self._hidden_states,
            "hidden_activations": self._hidden_activations,
            "chunk_winners": self._chunk_winners,
            "hidden_summation_temp": self._hidden_summation_temp,
        }

    def save(self) -> dict:
        from .persistence import save_state

        return save_state(self)

    def load(self, record: dict):
        from .persistence import load_state

        load_state(self, record)
