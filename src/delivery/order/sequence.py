"""Human-readable order numbers.

Each counter is its own row. A value is drawn in its own unit of work while
the row's lock is held, so concurrent placements never share a number. A
placement that fails afterwards leaves a gap, never a duplicate.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Integer, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.shared.locks import locks, sequence_key

ORDER_SEQUENCE = "order-number"


@delivery.aggregate
class Sequence:
    name = String(required=True, max_length=50)
    value = Integer(default=0, min_value=0)

    def next_value(self) -> int:
        self.value = (self.value or 0) + 1
        return self.value


@delivery.command(part_of="Sequence")
class DrawSequenceValue:
    name = String(required=True, max_length=50)


@delivery.command_handler(part_of=Sequence)
class SequenceHandler:
    @handle(DrawSequenceValue)
    def draw(self, command):
        repo = current_domain.repository_for(Sequence)
        try:
            sequence = repo.get(command.name)
        except ObjectNotFoundError:
            sequence = Sequence(id=command.name, name=command.name)
        value = sequence.next_value()
        repo.add(sequence)
        return value


def format_order_number(value: int) -> str:
    return f"ORD-{value:06d}"


def next_order_number() -> str:
    with locks.hold(sequence_key(ORDER_SEQUENCE)):
        value = current_domain.process(DrawSequenceValue(name=ORDER_SEQUENCE), asynchronous=False)
    return format_order_number(value)
