"""
Utility functions for FundsCycle display and input handling
"""

from decimal import Decimal

from .addresses import address_bytes
from .errors import InvalidAddress

LAMPORTS_PER_SOL = 10 ** 9


class Utils:
    """Helper utilities for FundsCycle amounts and addresses"""

    @staticmethod
    def to_lamports(sol) -> int:
        """
        Convert SOL to lamports (10^-9).

        Args:
            sol: Amount in SOL

        Returns:
            Amount in lamports

        Example:
            >>> Utils.to_lamports("1.5")
            1500000000
        """
        return int(Decimal(str(sol)) * LAMPORTS_PER_SOL)

    @staticmethod
    def from_lamports(lamports: int) -> float:
        """
        Convert lamports to SOL.

        Args:
            lamports: Amount in lamports

        Returns:
            Amount in SOL
        """
        return float(Decimal(lamports) / LAMPORTS_PER_SOL)

    @staticmethod
    def is_valid_address(address: str) -> bool:
        """
        Validate address format (base58, 32 bytes).

        Args:
            address: Address string

        Returns:
            True if valid, False otherwise
        """
        try:
            address_bytes(address)
        except InvalidAddress:
            return False
        return True

    @staticmethod
    def format_address(address: str, length: int = 8) -> str:
        """
        Format address for display (shortened).

        Args:
            address: Full address
            length: Number of characters to keep at each end

        Returns:
            Shortened address with ellipsis
        """
        if len(address) <= length * 2:
            return address
        return f"{address[:length]}...{address[-length:]}"

    @staticmethod
    def cycle_progress(current_index: int, max_beneficiaries: int) -> float:
        """Percentage of the rotation completed."""
        if max_beneficiaries <= 0:
            return 0.0
        return current_index / max_beneficiaries * 100

    @staticmethod
    def seconds_to_readable(seconds: int) -> str:
        """
        Convert seconds to human-readable format.

        Args:
            seconds: Number of seconds

        Returns:
            Readable string (e.g., "2h", "30d")
        """
        if seconds < 60:
            return f"{seconds}s"
        elif seconds < 3600:
            return f"{seconds // 60}m"
        elif seconds < 86400:
            return f"{seconds // 3600}h"
        else:
            return f"{seconds // 86400}d"
