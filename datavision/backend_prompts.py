DOMAIN_KNOWLEDGE = """
*** DOMAIN KNOWLEDGE (business rules and vocabulary) ***
1. Context: Energy Management & Meter Reading.
2. "unit": an energy unit reading.
   - CRITICAL RULE: the value may legitimately be 0.00 (normal), but it must **never be empty (Null/Empty)**.
     An empty unit is a data-quality defect; a zero unit is a valid reading.
3. "station": a Meter Reading Station, the fixed physical collection point used to identify and track readings.
4. "PEA": the Provincial Electricity Authority (the external utility).
5. "pea_export": metered energy the system delivers out to PEA (sold back / exported).
6. "pea_import": metered energy received in from PEA (bought / imported).
"""


ANALYSIS_PROMPT = """
Role: Senior Chief Technology Officer & Data Strategist
Task: Analyse the data structure of the uploaded Excel file and propose software development options at 4 levels (4 Options).

Data Headers: {HEADERS_JSON}
Sample Data: {SAMPLE_DATA_JSON}

{DOMAIN_KNOWLEDGE}

Propose exactly 4 options, one per level {LEVELS} (20%, 50%, 70%, 100% ambition), each tagged with its `level`.
Every option MUST fill in all of these fields: level, title, description, executiveBenefits,
operationalBenefits, technologies, developmentTools, visualization, concreteOutputs.

1. Executive Benefits (what do executives gain? e.g. load balancing, cost reduction from Import/Export analysis)
2. Operational Benefits (how does daily work get easier? e.g. alerts when a Unit is empty, recording 0.00 correctly)
3. Development Tools (name the concrete tools used to build it, e.g. Excel Macro, Power Apps, React, Python, an off-the-shelf platform)
4. Visualization Strategy (the overall presentation strategy)
5. **Concrete Outputs (very important)**: list at least 3-4 concrete outputs or alerts that fit the data shape you detected, for example:
   - **Validation**: "Instant Line Notify alert when a Unit is empty", "Report of Stations that submitted incomplete data"
   - **Energy Balance**: "Dashboard comparing pea_import vs pea_export", "Graph of consumption trend per Station"
   - **Map**: "Heatmap of Stations with high load", "Map of Station locations"
   Choose the kinds of output by relevance to the columns actually present.
6. Technologies (technical stack)

Write every text value in {REPLY_LANGUAGE}; keep the JSON keys in English.
Return only JSON matching the response schema: an object with a single "options" array.
"""


CHAT_SYSTEM_PROMPT = """
You are an AI Consultant specialised in Energy Data Management.
Context: {CONTEXT}

{DOMAIN_KNOWLEDGE}

Duties:
1. Answer concisely, in a modern and professional tone.
2. When asked about Data Quality, focus on checking for empty Unit values (empty is a defect, 0.00 is valid).
3. When asked about Reports, recommend a Dashboard comparing Import/Export.
4. Always reply in {REPLY_LANGUAGE}.
"""


SELECTED_OPTION_CONTEXT = """User Selected Option: {TITLE} (Level {LEVEL}%)
Tools: {TOOLS}
Visualization: {VISUALIZATION}
Concrete Outputs: {CONCRETE_OUTPUTS}"""

NO_OPTION_CONTEXT = "User has not selected a specific option yet."


WELCOME_MESSAGE = (
    "Hello! If you have any questions about **{SUBJECT}**, or want help drafting the work "
    "needed for any part of it, just ask."
)

WELCOME_DEFAULT_SUBJECT = "the analysis result"

OPTION_ANNOUNCEMENT_MESSAGE = (
    "You selected **{TITLE}**. Is there anything about the technologies {TECHNOLOGIES} "
    "you would like to know?"
)

CHAT_FALLBACK_MESSAGE = "Sorry, the assistant is temporarily unavailable. Please try again."
