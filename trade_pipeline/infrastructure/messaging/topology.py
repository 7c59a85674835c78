"""
Exchange / queue layout shared by the publisher and the consumer.

Both sides declare the same topology with the same arguments; RabbitMQ
rejects a redeclaration whose arguments differ, so a queue created by an
older deployment without dead-lettering has to be deleted once by hand.
"""

from dataclasses import dataclass
from typing import Tuple

from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

from trade_pipeline.infrastructure.config.settings import Settings


@dataclass(frozen=True)
class TradeTopology:
    exchange: str
    queue: str
    routing_key: str
    dead_letter_exchange: str
    dead_letter_queue: str

    @classmethod
    def from_settings(cls, config: Settings) -> "TradeTopology":
        return cls(
            exchange=config.rabbitmq_exchange,
            queue=config.rabbitmq_queue,
            routing_key=config.rabbitmq_routing_key,
            dead_letter_exchange=config.dead_letter_exchange,
            dead_letter_queue=config.dead_letter_queue,
        )


async def declare_topology(
    channel: AbstractChannel,
    topology: TradeTopology,
) -> Tuple[AbstractExchange, AbstractQueue]:
    """Idempotent: safe to run on every startup, from any process."""
    dead_letter_exchange = await channel.declare_exchange(
        topology.dead_letter_exchange, ExchangeType.DIRECT, durable=True,
    )
    dead_letter_queue = await channel.declare_queue(
        topology.dead_letter_queue, durable=True,
    )
    await dead_letter_queue.bind(dead_letter_exchange, routing_key=topology.routing_key)

    exchange = await channel.declare_exchange(
        topology.exchange, ExchangeType.DIRECT, durable=True,
    )
    queue = await channel.declare_queue(
        topology.queue,
        durable=True,
        arguments={
            "x-dead-letter-exchange": topology.dead_letter_exchange,
            "x-dead-letter-routing-key": topology.routing_key,
        },
    )
    await queue.bind(exchange, routing_key=topology.routing_key)

    return exchange, queue
