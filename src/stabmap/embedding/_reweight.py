from typing import Mapping, Optional, Sequence

import pandas as pd


def _column_groups(columns: pd.Index, references: Sequence[str]) -> dict[str, list]:
    groups: dict[str, list] = {}
    # longest prefix first, so "ref_a" is not swallowed by "ref"
    ordered = sorted(references, key=len, reverse=True)
    for column in columns:
        for reference in ordered:
            if str(column).startswith(f"{reference}_"):
                groups.setdefault(reference, []).append(column)
                break
        else:
            groups.setdefault(str(column).rsplit("_", 1)[0], []).append(column)
    return groups


def reweight_embedding(
    embedding: pd.DataFrame,
    weights: Optional[Mapping[str, float]] = None,
    factor: float = 1e6,
    references: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Balance the contribution of each reference's column block.

    Each block is divided by the sum of its column standard deviations, so
    every reference carries the same total spread, then multiplied by its
    weight (default 1) and ``factor``.

    Args:
        embedding: Output of :func:`stab_map`.
        weights: Optional reference name -> weight.
        factor: Common multiplier.
        references: Reference names; defaults to ``embedding.attrs["references"]``,
            else blocks are inferred from the text before the last ``_``.
    """
    if references is None:
        references = embedding.attrs.get("references", [])
    weights = weights or {}

    blocks = []
    for reference, columns in _column_groups(embedding.columns, references).items():
        block = embedding[columns]
        spread = block.std(axis=0, ddof=1).sum()
        if not spread > 0:
            spread = 1.0
        blocks.append(block * (weights.get(reference, 1.0) * factor / spread))

    out = pd.concat(blocks, axis=1)[embedding.columns]
    out.attrs = dict(embedding.attrs)
    return out
