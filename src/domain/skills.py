"""
Skill catalog - Freelancer skill suggestions for the Skills step.

The catalog starts from a built-in fallback list and is replaced by the
remote catalog when it can be loaded. Custom skills typed by the user are
registered remotely on a best-effort basis and always kept locally.
"""

import logging
from dataclasses import dataclass, field

from .exceptions import SubmissionError
from .models import Skill
from .ports import SkillsGateway

logger = logging.getLogger(__name__)

CUSTOM_SKILL_CATEGORY = "Other"

FALLBACK_SKILLS = (
    Skill("1", "JavaScript", "Programming"),
    Skill("2", "React", "Frontend"),
    Skill("3", "Node.js", "Backend"),
    Skill("4", "Python", "Programming"),
    Skill("5", "UI/UX Design", "Design"),
    Skill("6", "Figma", "Design"),
    Skill("7", "WordPress", "CMS"),
    Skill("8", "Content Writing", "Writing"),
    Skill("9", "Digital Marketing", "Marketing"),
    Skill("10", "SEO", "Marketing"),
    Skill("11", "Data Analysis", "Analytics"),
    Skill("12", "Machine Learning", "AI"),
)


@dataclass
class SkillCatalog:
    gateway: SkillsGateway
    skills: list[Skill] = field(default_factory=lambda: list(FALLBACK_SKILLS))

    async def load(self) -> list[Skill]:
        """Replace the fallback list with the remote catalog when available."""
        try:
            remote = await self.gateway.list_skills()
        except SubmissionError as e:
            logger.warning("Skill catalog unavailable, keeping fallback list: %s", e.message)
            return self.skills

        if remote:
            self.skills = [
                Skill(s.id, s.name, s.category or CUSTOM_SKILL_CATEGORY) for s in remote
            ] + [s for s in self.skills if s.custom]
        return self.skills

    def categories(self) -> list[str]:
        return sorted({s.category for s in self.skills})

    def filter(self, category: str | None = None, search: str | None = None) -> list[Skill]:
        """Skills in a category (None or "all" for every category) whose name contains search."""
        result = self.skills
        if category and category != "all":
            result = [s for s in result if s.category == category]
        if search:
            needle = search.strip().lower()
            result = [s for s in result if needle in s.name.lower()]
        return result

    def find(self, name: str) -> Skill | None:
        key = name.strip().lower()
        return next((s for s in self.skills if s.name.lower() == key), None)

    async def save_profile_skills(self, skills: list[str], access_token: str) -> None:
        """Store the chosen skills on the freelancer profile."""
        await self.gateway.update_skills(skills, access_token)
        logger.info("Saved %d skill(s) to freelancer profile", len(skills))

    async def add_custom(self, name: str) -> Skill:
        """
        Add a user-typed skill.

        The remote addSkill call is best-effort: on failure the skill is
        still added to the local catalog, flagged as custom.
        """
        name = name.strip()
        existing = self.find(name)
        if existing is not None:
            return existing

        try:
            created = await self.gateway.add_skill(name, CUSTOM_SKILL_CATEGORY)
            skill = Skill(created.id, created.name, created.category or CUSTOM_SKILL_CATEGORY, custom=True)
        except SubmissionError as e:
            logger.warning("Failed to add custom skill %r remotely: %s", name, e.message)
            skill = Skill(f"local-{len(self.skills) + 1}", name, CUSTOM_SKILL_CATEGORY, custom=True)

        self.skills.append(skill)
        return skill
