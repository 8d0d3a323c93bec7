from .derive_inputs import sfc_derive_inputs
from .add_sample import sfc_add_sample
from .stimulus import sfc_stimulus
from .activate import sfc_activate
from .inhibit import sfc_inhibit, sfc_inhibit_other
from .learn_weights import sfc_learn_weights

KERNELS = {
    "sfc_derive_inputs": sfc_derive_inputs,
    "sfc_add_sample": sfc_add_sample,
    "sfc_stimulus": sfc_stimulus,
    "sfc_activate": sfc_activate,
    "sfc_inhibit": sfc_inhibit,
    "sfc_inhibit_other": sfc_inhibit_other,
    "sfc_learn_weights": sfc_learn_weights,
}

KERNEL_NAMES = tuple(KERNELS)
