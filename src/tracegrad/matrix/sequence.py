"""
Ordered container of samples fed to and returned by a procedure.

A sample maps entry index -> Matrix; most definitions use a single entry 0.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from tracegrad.matrix.matrix import Matrix

Sample = Dict[int, Matrix]


class Sequence:
    def __init__(self, samples: Optional[Mapping[int, Union[Sample, Matrix]]] = None) -> None:
        self._samples: Dict[int, Sample] = {}
        for index, sample in (samples or {}).items():
            self.put(index, sample)

    @classmethod
    def from_matrices(cls, matrices: Iterable[Matrix]) -> "Sequence":
        return cls({index: matrix for index, matrix in enumerate(matrices)})

    def put(self, index: int, sample: Union[Sample, Matrix]) -> None:
        if isinstance(sample, Matrix):
            sample = {0: sample}
        self._samples[index] = dict(sample)

    def put_entry(self, index: int, entry: int, matrix: Matrix) -> None:
        self._samples.setdefault(index, {})[entry] = matrix

    def get(self, index: int) -> Sample:
        return self._samples[index]

    def entry(self, index: int, entry: int = 0) -> Matrix:
        return self._samples[index][entry]

    def keys(self) -> List[int]:
        return sorted(self._samples)

    def descending_keys(self) -> List[int]:
        return sorted(self._samples, reverse=True)

    @property
    def first_key(self) -> int:
        if not self._samples:
            raise KeyError("Sequence is empty.")
        return min(self._samples)

    @property
    def last_key(self) -> int:
        if not self._samples:
            raise KeyError("Sequence is empty.")
        return max(self._samples)

    def items(self) -> Iterable[Tuple[int, Sample]]:
        return [(index, self._samples[index]) for index in self.keys()]

    def matrices(self, entry: int = 0) -> List[Matrix]:
        return [self._samples[index][entry] for index in self.keys()]

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, index: object) -> bool:
        return index in self._samples

    def __iter__(self) -> Iterator[int]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"Sequence({len(self)} samples)"
