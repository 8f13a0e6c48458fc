"""
Integer encoding of short strings of complete states.

A string of complete states (a pair of equal-length observed and hidden strings)
is represented by three integers:

    * its length;
    * the rank of the observed string among all observed strings of that length;
    * the rank of the hidden string among all hidden strings of that length.

Ranks are fixed-radix numbers with the most significant digit first. For the
gene alphabets ("ACGT", "xi") the string A/x, C/x, G/i is encoded as
length 3, observed 012 (base 4) = 6, hidden 001 (base 2) = 1.
"""
from collections import namedtuple

import numpy as np


class Fragment(namedtuple("Fragment", ["observed", "hidden", "length"])):
    """Value type for an encoded string of complete states. Compare by all three fields."""

    __slots__ = ()


def sequence(index, base, length):
    """
    Converts the rank of a string among all strings of the given length back into symbols.

    Args:
        index (int): rank of the string.
        base (int): alphabet size.
        length (int): string length.

    Returns:
        np.ndarray: symbol indices (int8), most significant first.
    """
    seq = np.zeros(length, dtype=np.int8)
    for i in range(length):
        seq[length - i - 1] = index % base
        index //= base
    return seq


class FragmentFactory:
    """
    Creates fragments and performs operations on them.

    Radix powers are precomputed up to max_length; requesting a longer fragment
    is a programming error and raises ValueError.
    """

    def __init__(self, observed_states, hidden_states, max_length):
        self.observed_states = observed_states
        self.hidden_states = hidden_states
        self.n_observed = len(observed_states)
        self.n_hidden = len(hidden_states)
        self.max_length = max_length

        # Powers go from zero, hence the + 1
        self.obs_power = [self.n_observed ** i for i in range(max_length + 1)]
        self.hid_power = [self.n_hidden ** i for i in range(max_length + 1)]
        self.complete_power = [(self.n_observed * self.n_hidden) ** i
                               for i in range(max_length + 1)]

    def _check_length(self, length):
        if length < 0 or length > self.max_length:
            raise ValueError(
                f"Fragment length {length} is out of range [0, {self.max_length}]")

    def make(self, observed_index, hidden_index, length):
        self._check_length(length)
        return Fragment(observed_index, hidden_index, length)

    def observed_index(self, observed, start, length):
        """Rank of observed[start:start + length] among observed strings of that length."""
        index = 0
        for i in range(length):
            index = index * self.n_observed + int(observed[start + i])
        return index

    def hidden_index(self, hidden, start, length):
        index = 0
        for i in range(length):
            index = index * self.n_hidden + int(hidden[start + i])
        return index

    def fragment(self, observed, hidden, start, length):
        """
        Encodes a slice of complete states.

        Args:
            observed: observed state indices.
            hidden: hidden state indices, or an int with the rank of the hidden
                string (used by decoders that enumerate hidden hypotheses).
            start (int): position of the first symbol.
            length (int): fragment length.

        Returns:
            Fragment
        """
        self._check_length(length)
        obs_index = self.observed_index(observed, start, length)
        if isinstance(hidden, (int, np.integer)):
            hid_index = int(hidden)
        else:
            hid_index = self.hidden_index(hidden, start, length)
        return Fragment(obs_index, hid_index, length)

    def compose(self, x, y):
        """Fragment for the string xy."""
        self._check_length(x.length + y.length)
        return Fragment(x.observed * self.obs_power[y.length] + y.observed,
                        x.hidden * self.hid_power[y.length] + y.hidden,
                        x.length + y.length)

    def prefix(self, fragment, length):
        if length == fragment.length:
            return fragment
        shift = fragment.length - length
        return Fragment(fragment.observed // self.obs_power[shift],
                        fragment.hidden // self.hid_power[shift],
                        length)

    def suffix(self, fragment, length):
        if length == fragment.length:
            return fragment
        return Fragment(fragment.observed % self.obs_power[length],
                        fragment.hidden % self.hid_power[length],
                        length)

    def split(self, fragment, left, right):
        """
        Splits a fragment into a prefix of length left, a middle part and a suffix
        of length right. The middle part is None when prefix and suffix overlap.
        """
        prefix = self.prefix(fragment, left)
        suffix = self.suffix(fragment, right)
        middle = None
        if fragment.length > left + right:
            m_length = fragment.length - left - right
            middle = Fragment(
                (fragment.observed // self.obs_power[right]) % self.obs_power[m_length],
                (fragment.hidden // self.hid_power[right]) % self.hid_power[m_length],
                m_length)
        return prefix, middle, suffix

    def total_index(self, fragment):
        """Dense index of a fragment among all fragments of the same length."""
        return fragment.observed + fragment.hidden * self.obs_power[fragment.length]

    def from_total_index(self, index, length):
        return Fragment(index % self.obs_power[length], index // self.obs_power[length], length)

    def shift(self, tail, head):
        """
        Hidden rank of the tail obtained by moving the reading frame over head:
        the last tail.length hidden symbols of the string tail + head.
        """
        return (tail.hidden * self.hid_power[head.length] + head.hidden) \
            % self.hid_power[tail.length]

    def all_fragments(self, length):
        """All fragments of the given length, ordered by their total index."""
        self._check_length(length)
        return [self.from_total_index(i, length)
                for i in range(self.complete_power[length])]

    def embed(self, fragment, observed, hidden, start):
        """Writes the symbols of a fragment into observed/hidden arrays starting at start."""
        observed[start:start + fragment.length] = sequence(
            fragment.observed, self.n_observed, fragment.length)
        hidden[start:start + fragment.length] = sequence(
            fragment.hidden, self.n_hidden, fragment.length)

    def to_string(self, fragment):
        """
        Two characters per complete state, observed then hidden, e.g. "AxCxGi".
        """
        obs = sequence(fragment.observed, self.n_observed, fragment.length)
        hid = sequence(fragment.hidden, self.n_hidden, fragment.length)
        return "".join(self.observed_states[o] + self.hidden_states[h]
                       for o, h in zip(obs, hid))
