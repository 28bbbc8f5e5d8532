"""Utility functions for text formatting."""

from typing import Optional, Tuple


def format_name(name: str) -> str:
    """Format a name with proper capitalization.
    
    Every word starts with a capital letter, rest are lowercase.
    Handles multiple spaces and special characters.
    
    Args:
        name: Raw name string from user input
        
    Returns:
        Formatted name with proper capitalization
        
    Examples:
        >>> format_name("NEW YORK")
        'New York'
        >>> format_name("rio de   janeiro")
        'Rio De Janeiro'
        >>> format_name("cote d'IVOIRE")
        "Cote D'Ivoire"
        >>> format_name("aix-EN-provence")
        'Aix-En-Provence'
    """
    if not name:
        return ""
    
    words = name.strip().split()
    formatted_words = []
    
    for word in words:
        # Handle hyphenated names (e.g., Aix-En-Provence)
        if '-' in word:
            parts = word.split('-')
            formatted_words.append('-'.join(part.capitalize() for part in parts if part))
        
        # Handle apostrophes (e.g., Cote D'Ivoire)
        elif "'" in word:
            parts = word.split("'")
            formatted_words.append("'".join(part.capitalize() for part in parts if part))
        
        else:
            formatted_words.append(word.capitalize())
    
    return ' '.join(formatted_words)


def normalize_destination(destination: Optional[str]) -> Optional[str]:
    """Normalize a free-form "City, Country" destination.

    Each comma-separated part is trimmed and capitalized; empty parts are
    dropped. Returns None for blank input.

        >>> normalize_destination("kyoto ,  JAPAN")
        'Kyoto, Japan'
    """
    if destination is None:
        return None
    parts = [format_name(part) for part in destination.split(',')]
    parts = [part for part in parts if part]
    return ', '.join(parts) or None


def split_destination(destination: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (city, country) parsed from a destination string.

    The city is the text before the first comma and the country the text
    after the last comma. A destination without a comma has no country.
    """
    if not destination or not destination.strip():
        return None, None
    if ',' not in destination:
        return destination.strip() or None, None
    city = destination.split(',', 1)[0].strip() or None
    country = destination.rsplit(',', 1)[1].strip() or None
    return city, country


def clean_text(value: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """Trim a free-text field and strip angle brackets; blank becomes None."""
    if value is None:
        return None
    value = value.strip().replace('<', '').replace('>', '')
    if max_length is not None:
        value = value[:max_length]
    return value or None
