"""
Spending a Taproot descriptor: choosing the cheapest way to satisfy it given the
available material, and bounding the cost of satisfying it without any.
"""

import logging

from ..miniscript import Satisfaction
from ..miniscript.errors import MiniscriptPropertyError
from ..plan import MAX_SCHNORR_SIG_SIZE, Placeholder
from ..utils.taproot import control_block_len, varint_len, witness_size

from .errors import ImpossibleSatisfactionError


logger = logging.getLogger(__name__)


def best_tap_spend(desc, provider, allow_malleable=False):
    """Get a plan for the cheapest spend of this descriptor.

    The key path is always used if a signature for the internal key is available.
    Otherwise the satisfiable leaf with the smallest witness is used, the first one in
    depth-first order in case of a tie.

    :param provider: an AssetProvider telling what material is available.
    :param allow_malleable: whether to plan for the smallest, possibly malleable,
                            satisfaction of the leaves.
    :returns: a Satisfaction, whose witness is None if no spending path is available.
    """
    spend_info = desc.spend_info()

    sig_size = provider.provider_lookup_tap_key_spend_sig(desc.internal_key)
    if sig_size is not None:
        logger.debug("Spending through the key path")
        return Satisfaction(
            [Placeholder.key_spend_sig(desc.internal_key, spend_info.merkle_root, sig_size)],
            has_sig=True,
        )

    best, best_size = Satisfaction.unavailable(), None
    n_satisfiable = 0
    for depth, ms in desc.iter_scripts():
        if allow_malleable:
            sat = ms.build_template_mall(provider)
        else:
            sat = ms.build_template(provider)
        if sat.is_unavailable():
            continue
        n_satisfiable += 1

        script = ms.script
        control_block = spend_info.control_block(script)
        assert control_block is not None, f"No control block for leaf '{ms}'"
        witness = sat.witness + [
            Placeholder.tap_script(script),
            Placeholder.tap_control_block(control_block),
        ]
        size = witness_size(witness)
        if best_size is None or size < best_size:
            best = Satisfaction(
                witness, sat.has_sig, sat.absolute_timelock, sat.relative_timelock
            )
            best_size = size
            best_depth = depth

    if best_size is None:
        logger.debug("No spending path available")
    else:
        logger.debug(
            "Spending through the script path: %d satisfiable leaves, using the one at "
            "depth %d with a %d bytes witness",
            n_satisfiable,
            best_depth,
            best_size,
        )
    return best


def _leaf_estimates(desc):
    """Yield the worst-case cost components of every satisfiable leaf."""
    for depth, ms in desc.iter_scripts():
        try:
            max_sat_elems = ms.max_satisfaction_witness_elements()
            max_sat_size = ms.max_satisfaction_size()
        except MiniscriptPropertyError:
            continue
        yield ms.script_size(), max_sat_elems, max_sat_size, control_block_len(depth)


def max_weight_to_satisfy(desc):
    """The maximum weight of the witness needed to spend this descriptor, accounting
    for the change in size of the witness stack count of an empty input.

    It is never less than the weight of a key path spend, which may always be used.
    Raises ImpossibleSatisfactionError if none of the leaves can be satisfied.
    """
    # A single, maximum-sized, signature.
    key_path_weight = varint_len(1) - varint_len(0) + 1 + MAX_SCHNORR_SIG_SIZE
    if desc.tap_tree is None:
        return key_path_weight

    weights = []
    for script_size, max_sat_elems, max_sat_size, cb_size in _leaf_estimates(desc):
        # The script and the control block are two more stack elements.
        stack_varint_diff = varint_len(max_sat_elems + 2) - varint_len(0)
        weights.append(
            stack_varint_diff
            + max_sat_size
            + varint_len(script_size)
            + script_size
            + varint_len(cb_size)
            + cb_size
        )
    if not weights:
        raise ImpossibleSatisfactionError(f"No leaf of '{desc}' can be satisfied")

    logger.debug("Maximum satisfaction weight over %d leaves: %d", len(weights), max(weights))
    return max(key_path_weight, *weights)


def max_satisfaction_weight(desc):
    """The maximum weight of the scriptSig length and witness needed to spend this
    descriptor.

    Deprecated: it counts the whole witness stack count, as well as the scriptSig
    length. Use max_weight_to_satisfy() instead.
    """
    # scriptSig length, stack count, signature length and signature.
    key_path_weight = 4 + 1 + 1 + MAX_SCHNORR_SIG_SIZE
    if desc.tap_tree is None:
        return key_path_weight

    weights = [
        4
        + varint_len(max_sat_elems + 2)
        + max_sat_size
        + varint_len(script_size)
        + script_size
        + varint_len(cb_size)
        + cb_size
        for script_size, max_sat_elems, max_sat_size, cb_size in _leaf_estimates(desc)
    ]
    if not weights:
        raise ImpossibleSatisfactionError(f"No leaf of '{desc}' can be satisfied")
    return max(key_path_weight, *weights)
