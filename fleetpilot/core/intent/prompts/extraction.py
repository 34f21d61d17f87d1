"""Prompt template for extracting process names from free text."""

TARGET_EXTRACTION_TEMPLATE: str = """Process name extractor. Find the process/application names in the operator's input.

INPUT: "{text}"

RULES:
1. Include: technical identifiers, application and service names
2. Include: hyphenated names (api-server, worker-queue)
3. Include: dotted names (app.js, service.py)
4. Exclude: common words, articles, pronouns, politeness words
5. Exclude: generic terms (server, app, process, service) and command verbs
6. Language agnostic, typo tolerant
7. Minimum 3 characters, no standalone numbers

EXAMPLES:
- "restart api-server" -> ["api-server"]
- "show logs for my-app.js" -> ["my-app.js"]
- "the worker-queue is slow" -> ["worker-queue"]
- "start the application" -> []
- "redémarre mon api-server" -> ["api-server"]

JSON RESPONSE (array only):
["process_name_1", "process_name_2"]"""
