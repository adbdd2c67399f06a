"""
Key types for the smart factors.
"""
from attrs import define, field, validators
from ..utils.validation import _check_valid_key


@define
class Key:
    """
    A key uniquely identifying a camera variable in the optimizer.
    Keys are strings starting with a capital letter followed by numbers (e.g., "X0", "C12").
    """
    key: str = field(
        validator=validators.and_(
            validators.instance_of(str),
            _check_valid_key,
        ),
        metadata={"description": "The unique key identifier."},
    )

    @classmethod
    def from_char_index(cls, char: str, index: int) -> "Key":
        """Builds a key from its character prefix and numeric index, e.g. ("X", 3) -> X3."""
        return cls(f"{char}{int(index)}")

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.key

    def __repr__(self) -> str:
        return f"Key({self.key})"

    @property
    def char(self) -> str:
        """Returns the character prefix of the key."""
        return self.key[0]

    @property
    def index(self) -> int:
        """Returns the numeric index of the key."""
        return int(self.key[1:])
