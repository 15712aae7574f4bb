"""Per-channel keep/eject decisions."""

from __future__ import annotations

import logging
from typing import Callable

from poreselect.engine.models import (
    ChannelFilter,
    Classification,
    Decision,
    MappingResult,
    RunMode,
)

logger = logging.getLogger(__name__)


class ChannelDecider:
    """Turns one mapping result into one channel action.

    Rules, in order:

    1. an ended read is ``ENDED`` whatever the mode or filter;
    2. a channel outside the configured filter is always ``KEEP``;
    3. a read in the mode's reject class (mapped when depleting, unmapped
       when enriching) is ``EJECT``, unless ``should_eject`` refuses, in
       which case it is kept;
    4. anything else is ``KEEP``.
    """

    def __init__(
        self,
        mode: RunMode,
        channel_filter: ChannelFilter = ChannelFilter.ALL,
    ) -> None:
        self.mode = mode
        self.channel_filter = channel_filter

    def decide(
        self,
        result: MappingResult,
        should_eject: Callable[[], bool],
    ) -> Decision:
        if result.classification == Classification.ENDED:
            return Decision.ENDED

        if not self.channel_filter.includes(result.channel):
            return Decision.KEEP

        if result.classification == self.mode.reject_class:
            if should_eject():
                return Decision.EJECT
            logger.debug(
                "Eject of %s on channel %d refused by instrument; keeping",
                result.read_id, result.channel,
            )
        return Decision.KEEP
