"""
freeCodeCamp fetcher.

freeCodeCamp has no public curriculum API, so the curriculum outline is
kept here and shaped into queue items without outbound requests.
"""

import logging
from typing import AsyncIterator, Dict, List

from core.infra.http import HttpClient
from core.interfaces import Fetcher
from core.models import ScrapedItem


logger = logging.getLogger(__name__)


CURRICULUMS = [
    ("Responsive Web Design", "responsive-web-design"),
    ("JavaScript Algorithms", "javascript-algorithms-and-data-structures"),
    ("Front End Libraries", "front-end-development-libraries"),
    ("Data Visualization", "data-visualization"),
    ("APIs and Microservices", "back-end-development-and-apis"),
    ("Quality Assurance", "quality-assurance"),
    ("Scientific Computing Python", "scientific-computing-with-python"),
    ("Data Analysis Python", "data-analysis-with-python"),
    ("Machine Learning Python", "machine-learning-with-python"),
    ("Relational Database", "relational-database"),
    ("Information Security", "information-security"),
    ("Coding Interview Prep", "coding-interview-prep"),
]

# (name, slug, type) per curriculum slug
SECTIONS: Dict[str, List[tuple]] = {
    "responsive-web-design": [
        ("Learn HTML by Building a Cat Photo App", "learn-html-by-building-a-cat-photo-app", "project"),
        ("Learn Basic CSS", "learn-basic-css-by-building-a-cafe-menu", "project"),
        ("CSS Colors", "learn-css-colors-by-building-a-set-of-colored-markers", "project"),
        ("HTML Forms", "learn-html-forms-by-building-a-registration-form", "project"),
        ("CSS Box Model", "learn-the-css-box-model-by-building-a-rothko-painting", "project"),
    ],
    "javascript-algorithms-and-data-structures": [
        ("Basic JavaScript", "basic-javascript", "lessons"),
        ("ES6", "es6", "lessons"),
        ("Regular Expressions", "regular-expressions", "lessons"),
        ("Debugging", "debugging", "lessons"),
        ("Basic Data Structures", "basic-data-structures", "lessons"),
        ("Basic Algorithm Scripting", "basic-algorithm-scripting", "challenges"),
        ("OOP", "object-oriented-programming", "lessons"),
        ("Functional Programming", "functional-programming", "lessons"),
        ("Intermediate Algorithm Scripting", "intermediate-algorithm-scripting", "challenges"),
    ],
    "front-end-development-libraries": [
        ("Bootstrap", "bootstrap", "lessons"),
        ("jQuery", "jquery", "lessons"),
        ("Sass", "sass", "lessons"),
        ("React", "react", "lessons"),
        ("Redux", "redux", "lessons"),
        ("React and Redux", "react-and-redux", "lessons"),
    ],
    "data-visualization": [
        ("D3", "d3", "lessons"),
        ("JSON APIs and AJAX", "json-apis-and-ajax", "lessons"),
    ],
    "back-end-development-and-apis": [
        ("Managing Packages with NPM", "managing-packages-with-npm", "lessons"),
        ("Basic Node and Express", "basic-node-and-express", "lessons"),
        ("MongoDB and Mongoose", "mongodb-and-mongoose", "lessons"),
    ],
}
OVERVIEW = [("Overview", "", "overview")]


class FreeCodeCampFetcher(Fetcher):
    name = "freecodecamp"
    url = "https://www.freecodecamp.org"
    fetch_frequency = "12:00:00"

    def __init__(self, http: HttpClient):
        super().__init__()
        self.http = http

    @property
    def config(self):
        return {"curriculums": [slug for _, slug in CURRICULUMS]}

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        for name, slug in CURRICULUMS:
            yield ScrapedItem(
                source=self.name,
                content_type="curriculum",
                raw_content={
                    "name": name,
                    "slug": slug,
                    "url": f"{self.url}/learn/{slug}",
                    "type": "certification_path",
                },
                priority=7,
            )
            for section_name, section_slug, kind in SECTIONS.get(slug, OVERVIEW):
                yield ScrapedItem(
                    source=self.name,
                    content_type="tutorial",
                    raw_content={
                        "curriculum": name,
                        "section": section_name,
                        "url": f"{self.url}/learn/{slug}/{section_slug}",
                        "type": kind,
                    },
                    priority=6,
                )
            logger.debug(f"freeCodeCamp {name} shaped")
            await self.http.pause()
