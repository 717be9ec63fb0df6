"""Work order generation for the task pool.

Templates from configuration define what kinds of orders arrive; Faker
supplies client names and order references so generated pools look like a
real order book. All randomness comes from the world's seeded RNG and a
seeded Faker instance, so a fixed seed reproduces the same arrivals.
"""

import random
from typing import List, Optional, Sequence

from faker import Faker

from .config import TaskTemplateConfig
from .models import TaskPriority, TaskSpec

PRIORITY_ORDER = (TaskPriority.NORMAL, TaskPriority.RUSH, TaskPriority.CRITICAL)


class TaskGenerator:
    """Generates task specs from templates at a configured arrival rate."""

    def __init__(
        self,
        templates: Sequence[TaskTemplateConfig],
        rng: random.Random,
        seed: Optional[int] = None,
        rate_per_hour: float = 0.0,
    ):
        self.templates = list(templates)
        self.rate_per_hour = rate_per_hour
        self._rng = rng
        self._fake = Faker()
        if seed is not None:
            self._fake.seed_instance(seed)
        self._order_counter = 1000

    def generate(self, template: Optional[TaskTemplateConfig] = None) -> TaskSpec:
        """Create one task spec, from ``template`` or a random template."""
        if template is None:
            if not self.templates:
                raise ValueError("no task templates configured")
            template = self._rng.choice(self.templates)

        self._order_counter += 1
        priority = self._rng.choices(PRIORITY_ORDER, weights=template.priority_weights)[0]
        workload = round(self._rng.uniform(*template.workload_range), 1)
        value = round(self._rng.uniform(*template.value_range), 2)

        return TaskSpec(
            display_name=f"{template.name} #{self._order_counter}",
            client_name=self._fake.company(),
            task_type=template.task_type,
            workload_minutes=workload,
            priority=priority,
            order_value=value,
        )

    def arrivals(self, delta_minutes: float) -> List[TaskSpec]:
        """Orders arriving during a tick of ``delta_minutes``.

        The expected count is ``rate * delta / 60``; the whole part always
        arrives and the fractional part is a Bernoulli trial.
        """
        if self.rate_per_hour <= 0 or delta_minutes <= 0 or not self.templates:
            return []

        expected = self.rate_per_hour * delta_minutes / 60.0
        count = int(expected)
        if self._rng.random() < expected - count:
            count += 1
        return [self.generate() for _ in range(count)]
