"""Topic/QoS pairing for subscriptions."""

from collections.abc import Sequence
from enum import IntEnum
from typing import Literal

from mqtt_subscriber.errors import InvalidQosError

QosPolicy = Literal["replicate_first", "default_remaining"]


class QoS(IntEnum):
    """MQTT delivery guarantee levels."""

    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


def to_qos(value: int) -> QoS:
    """Map a configured integer to a delivery guarantee level.

    Raises:
        InvalidQosError: If the value is not 0, 1 or 2.
    """
    # bool is an int subclass; a YAML "true" is not a QoS level
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQosError(value)
    try:
        return QoS(value)
    except ValueError:
        raise InvalidQosError(value) from None


def normalize_qos(
    topics: Sequence[str],
    qos: Sequence[int],
    policy: QosPolicy = "replicate_first",
) -> list[QoS]:
    """Produce exactly one QoS level per topic.

    Topics and QoS values pair up by position. When fewer QoS values than
    topics are given, ``policy`` decides how the gap is filled:

    - ``replicate_first``: the first value is applied to every topic and the
      rest of the list is ignored.
    - ``default_remaining``: the given values are kept for the leading topics
      and the remaining topics get ``AT_MOST_ONCE``.

    An empty QoS list defaults every topic to ``AT_MOST_ONCE``. Surplus QoS
    values beyond the topic count are ignored.

    Args:
        topics: Topic filters, in subscription order.
        qos: Requested QoS integers.
        policy: Padding policy for short QoS lists.

    Returns:
        One QoS level per topic.

    Raises:
        InvalidQosError: If a value in the slice being used is out of range.
    """
    n_topics = len(topics)
    if n_topics == 0:
        return []
    if not qos:
        return [QoS.AT_MOST_ONCE] * n_topics
    if len(qos) >= n_topics:
        return [to_qos(q) for q in qos[:n_topics]]

    if policy == "default_remaining":
        given = [to_qos(q) for q in qos]
        return given + [QoS.AT_MOST_ONCE] * (n_topics - len(given))
    return [to_qos(qos[0])] * n_topics
