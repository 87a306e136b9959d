"""Adapter for Rambaut & Grassly's Seq-Gen.

The genealogy is handed to seq-gen through a temporary tree file, and its output is read back from a second one.
Both are uniquely named per call and removed on exit, whether or not seq-gen succeeds.
"""
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Iterable, List

import numpy as np
import sh

from ..errors import InvalidParameter

logger = logging.getLogger(__name__)


def _parse_phylip(lines: Iterable[str]) -> List[str]:
    """Parse sequential PHYLIP output: a header line `n L`, then one sequence per line led by its taxon label.

    Example:
        >>> _parse_phylip([" 2 4", "n0        ACGT", "n1        ACGA"])
        ['ACGT', 'ACGA']
    """
    it = (line.rstrip("\n") for line in lines)
    it = (line for line in it if line.strip())
    try:
        n, width = map(int, next(it).split())
    except StopIteration:
        raise ValueError("empty seq-gen output") from None
    ret = []
    for line in it:
        _, seq = line.split(None, 1)
        ret.append(seq.replace(" ", ""))
        if len(ret) == n:
            break
    if len(ret) != n or any(len(s) != width for s in ret):
        raise ValueError("truncated seq-gen output: expected %d sequences of length %d" % (n, width))
    return ret


@dataclass
class SeqGen:
    """Sequence generator backed by the external `seq-gen` binary, under the HKY model.

    Args:
        kappa: Transition/transversion ratio (`-t`).
        path: Location of the binary. Defaults to `$SEQGEN_PATH`, then `seq-gen` on the `PATH`.
    """

    kappa: float = 2.0
    path: str = None

    def __post_init__(self):
        if self.kappa <= 0:
            raise InvalidParameter("kappa must be positive", kappa=self.kappa)
        if self.path is None:
            self.path = os.environ.get("SEQGEN_PATH", "seq-gen")
        self._seqgen = sh.Command(self.path)

    def __call__(self, genealogy: "tskit.TreeSequence", theta: float, rng: np.random.Generator) -> List[str]:
        L = int(genealogy.sequence_length)
        # branch lengths are in generations; seq-gen scales them to substitutions per site
        scale = theta / (4 * L)
        newick = genealogy.first().as_newick()
        with tempfile.NamedTemporaryFile("wt", suffix=".tree") as tree, tempfile.NamedTemporaryFile(
            "rt", suffix=".phy"
        ) as out:
            print(newick, file=tree, flush=True)
            self._seqgen(
                "-mHKY",
                "-t%g" % self.kappa,
                "-l%d" % L,
                "-s%.12g" % scale,
                "-z%d" % rng.integers(1, np.iinfo(np.int32).max),
                "-q",
                tree.name,
                _out=out.name,
            )
            with open(out.name, "rt") as f:
                ret = _parse_phylip(f)
        logger.debug("seq-gen produced %d sequences of length %d", len(ret), L)
        return ret
