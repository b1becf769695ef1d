# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Callable

import random


class Backoff:
    """
    Exponential reconnect backoff with jitter

    Delays never decrease until reset() is called and never exceed the
    maximum. Jitter is applied before clamping, so it can only delay the
    growth of the interval, not reverse it.
    """

    def __init__(
        self,
        initial: float = 1.0,
        maximum: float = 120.0,
        factor: float = 1.5,
        jitter: float = 0.2,
        rand: Callable[[], float] = random.random,
    ) -> None:

        if initial <= 0:
            raise ValueError("initial must be positive")
        if maximum < initial:
            raise ValueError("maximum must not be smaller than initial")
        if factor < 1:
            raise ValueError("factor must be at least 1")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

        self._initial = initial
        self._maximum = maximum
        self._factor = factor
        self._jitter = jitter
        self._rand = rand

        self._base = initial
        self._last = 0.0
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def maximum(self) -> float:
        return self._maximum

    def next_delay(self) -> float:
        spread = self._jitter * (2 * self._rand() - 1)
        delay = self._base * (1 + spread)
        delay = min(self._maximum, max(self._last, delay))

        self._last = delay
        self._base = min(self._maximum, self._base * self._factor)
        self._attempts += 1
        return delay

    def reset(self) -> None:
        self._base = self._initial
        self._last = 0.0
        self._attempts = 0
