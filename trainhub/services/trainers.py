# trainhub/services/trainers.py
"""Trainer catalog (read-only reference data owned outside the engine)."""

from typing import Iterable

from ..exceptions import NotFoundError
from ..schemas.trainers import PriceDescriptor, PriceMode, Trainer


def _default_roster() -> list[Trainer]:
    session_price = PriceDescriptor(
        price_key="training_session",
        display_price=25,
        mode=PriceMode.RECURRING,
    )
    return [
        Trainer(
            id="1",
            name="Sarah Johnson",
            expertise=frozenset({"React", "TypeScript", "Node.js"}),
            description="Full-stack developer building scalable web applications.",
            rating=4.9,
            total_sessions=245,
            price=session_price.model_copy(update={"display_price": 10}),
        ),
        Trainer(
            id="2",
            name="Michael Chen",
            expertise=frozenset({"Python", "Machine Learning", "Data Science"}),
            description="AI researcher specializing in machine learning.",
            rating=4.8,
            total_sessions=189,
            price=session_price.model_copy(update={"display_price": 10}),
        ),
        Trainer(
            id="3",
            name="Emily Rodriguez",
            expertise=frozenset({"Java", "Spring Boot", "Microservices"}),
            description="Backend engineer focused on enterprise Java and cloud architecture.",
            rating=4.7,
            total_sessions=156,
            price=session_price,
        ),
        Trainer(
            id="4",
            name="David Kim",
            expertise=frozenset({"DevOps", "AWS", "Kubernetes"}),
            description="Cloud infrastructure specialist, containers and CI/CD.",
            rating=4.9,
            total_sessions=203,
            price=session_price,
        ),
    ]


class TrainerCatalog:
    def __init__(self, trainers: Iterable[Trainer] | None = None):
        roster = _default_roster() if trainers is None else list(trainers)
        self._trainers = {t.id: t for t in roster}

    def get(self, trainer_id: str) -> Trainer:
        trainer = self._trainers.get(trainer_id)
        if trainer is None:
            raise NotFoundError(f"Trainer {trainer_id} not found", details={"trainer_id": trainer_id})
        return trainer

    def all(self) -> list[Trainer]:
        return list(self._trainers.values())
