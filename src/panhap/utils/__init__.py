"""
Module containing various utility functions and classes.
"""
from argparse import Namespace
from dataclasses import dataclass, fields
from itertools import islice
from pathlib import Path
from typing import Union, Iterable, Iterator, TypeVar

T = TypeVar('T')


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class Config:
    """
    Config parent class that can conveniently set attributes from CLI args
    """

    @classmethod
    def from_args(cls, args: Namespace):
        """
        Sets attributes of the class from a Namespace object (e.g. from argparse)

        Parameters
        ----------
        args : :class:`argparse.Namespace`
            :class:`argparse.Namespace` object containing attributes to set

        Returns
        -------
        cls
            Class instance with attributes set from args

        """
        return cls(**{f.name: getattr(args, f.name) for f in fields(cls) if hasattr(args, f.name)})


# Functions ------------------------------------------------------------------------------------------------------------
def is_non_empty_file(file: Union[str, Path], min_size: int = 1) -> bool:
    """
    Checks if a file exists, is a file, and is non-empty (optionally above a minimum size).

    :param file: Path to the file to check.
    :param min_size: Minimum size of the file in bytes.
    :return: True if the file exists, is a file, and is non-empty, False otherwise.
    """
    file = Path(file)
    return file.is_file() and file.stat().st_size >= min_size


def batched(iterable: Iterable[T], n: int) -> Iterator[list[T]]:
    """
    Yields successive lists of at most `n` items.

    :param iterable: Items to split.
    :param n: Maximum batch size, must be positive.
    """
    if n < 1: raise ValueError('Batch size must be at least 1')
    it = iter(iterable)
    while batch := list(islice(it, n)): yield batch
