"""
hired/features/simulations/service.py

Simulation catalogue (read-only).
"""

import logging
from typing import List

from sqlalchemy import select

from hired.core.database import Database, simulations, technologies
from hired.core.errors import SimulationNotFoundError
from hired.models.simulation import Simulation, SimulationWithTechnology, Technology

logger = logging.getLogger(__name__)


def simulation_from_row(row) -> Simulation:
    return Simulation(
        id=row.id,
        title=row.title,
        description=row.description,
        technology_id=row.technology_id,
        difficulty=row.difficulty,
        duration_minutes=row.duration_minutes,
        question_count=len(row.questions or ()),
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


class SimulationCatalog:
    def __init__(self, db: Database):
        self.db = db

    async def list_available(self) -> List[SimulationWithTechnology]:
        """Active simulations, newest first, with their technology."""
        async with self.db.session() as session:
            sim_rows = (
                await session.execute(
                    select(simulations)
                    .where(simulations.c.is_active.is_(True))
                    .order_by(simulations.c.created_at.desc(), simulations.c.id)
                )
            ).all()
            tech_ids = {row.technology_id for row in sim_rows}
            tech_rows = []
            if tech_ids:
                tech_rows = (
                    await session.execute(select(technologies).where(technologies.c.id.in_(tech_ids)))
                ).all()

        techs = {
            row.id: Technology(
                id=row.id,
                name=row.name,
                slug=row.slug,
                icon_url=row.icon_url,
                category=row.category,
            )
            for row in tech_rows
        }
        return [
            SimulationWithTechnology(simulation=simulation_from_row(row), technology=techs.get(row.technology_id))
            for row in sim_rows
        ]

    async def get_simulation(self, simulation_id: str, *, active_only: bool = False) -> Simulation:
        query = select(simulations).where(simulations.c.id == simulation_id)
        if active_only:
            query = query.where(simulations.c.is_active.is_(True))
        async with self.db.session() as session:
            row = (await session.execute(query)).first()
        if row is None:
            raise SimulationNotFoundError(f"Simulation {simulation_id} not found")
        return simulation_from_row(row)
