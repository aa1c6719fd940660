from __future__ import annotations

from typing import Dict, List, Sequence

# subject -> concept_id -> material. Each concept carries its own difficulty tier.
CONCEPT_LIBRARY: Dict[str, Dict[str, Dict[str, object]]] = {
    "mathematics": {
        "fractions": {
            "title": "Fractions",
            "difficulty_tier": "basic",
            "guiding_questions": [
                "If you had a pizza to share with your brother, how would you split it?",
                "If you eat half of an apple, how much of it is left?",
                "What does it mean when we say 'a quarter of an hour'?",
                "If you had 4 sweets and gave your friend one, what part did you give away?",
                "How could you write one half using numbers?",
            ],
            "analogies": [
                "A fraction is like a slice of cake: the bottom number says how many slices the cake was cut into, the top number says how many you took.",
                "Think of a fraction like sharing money: 10 coins split between 5 people gives each person 2.",
                "A fraction is like a measuring cup marked in parts: you fill it to the line you need.",
            ],
            "real_world_examples": [
                "Half a cup of flour in a recipe.",
                "A quarter of an hour on the clock.",
                "Splitting a restaurant bill between friends.",
                "Being a third of the way through a journey.",
            ],
            "common_misconceptions": [
                "Believing a fraction is larger when its bottom number is larger.",
                "Not seeing that 1/2 = 2/4 = 3/6.",
                "Mixing up the rules for adding and multiplying fractions.",
            ],
            "visual_aids": [
                "Circles divided into equal parts.",
                "Shaded rectangles.",
                "Pieces of fruit or pizza.",
            ],
        },
        "pythagoras": {
            "title": "Pythagorean theorem",
            "difficulty_tier": "intermediate",
            "guiding_questions": [
                "In a right triangle, which side do you think is the longest?",
                "Why might the side opposite the right angle be the longest one?",
                "If a ladder leans against a wall, how could you work out its length?",
                "What relationship do you expect between the sides of a right triangle?",
                "How could we check that a triangle really has a right angle?",
            ],
            "analogies": [
                "A right triangle is like the corner of a room: the two walls are the legs and the diagonal across the floor is the hypotenuse.",
                "It is like a ladder against a wall: the distance from the wall, the height reached, and the ladder itself.",
                "It is like walking in a city grid: east then north, or straight across diagonally.",
            ],
            "real_world_examples": [
                "Finding how long a ladder must be to reach a second-floor window.",
                "Measuring the straight-line distance between two points on a map.",
                "Computing a TV's diagonal from its width and height.",
            ],
            "common_misconceptions": [
                "Believing the theorem holds for every triangle.",
                "Confusing the hypotenuse with the other sides.",
                "Forgetting that the side lengths must be squared.",
            ],
            "visual_aids": [
                "A right triangle with labelled sides.",
                "Squares drawn on each side to show the areas.",
                "A square grid for counting areas.",
            ],
        },
    },
    "physics": {
        "ohms_law": {
            "title": "Ohm's law",
            "difficulty_tier": "intermediate",
            "guiding_questions": [
                "If you use a stronger battery with a lamp, what do you expect to happen to its brightness?",
                "If a brighter lamp means more current, how are battery strength and current related?",
                "What happens to the current if we add a larger resistance to the circuit?",
                "Why do powerful appliances need thicker cables?",
                "How could we control how bright a lamp is?",
            ],
            "analogies": [
                "Electricity is like water in pipes: voltage is the pressure, current is the flow, and resistance is how narrow the pipe is.",
                "It is like a motorway: voltage is the speed limit, current is the number of cars, resistance is the traffic jam.",
                "It is like a river: voltage is the slope, current is the speed of the water, resistance is the rocks in the way.",
            ],
            "real_world_examples": [
                "House lights dimming when the voltage drops.",
                "Wires heating up when a large current flows.",
                "How a dimmer switch works at home.",
            ],
            "common_misconceptions": [
                "Believing resistance produces electricity.",
                "Not distinguishing voltage from current.",
                "Believing more resistance means more current.",
            ],
            "visual_aids": [
                "A simple circuit diagram.",
                "A chart relating V, I and R.",
                "Colour-coding voltage, current and resistance.",
            ],
        },
        "gravity": {
            "title": "Gravity",
            "difficulty_tier": "basic",
            "guiding_questions": [
                "Why does an apple fall down rather than up?",
                "What happens when you jump into the air?",
                "Why don't objects just float around us?",
                "Do you think gravity acts on every object in the same way?",
                "Why does a stone fall faster than a feather through the air?",
            ],
            "analogies": [
                "Gravity is like a hidden magnet pulling everything towards the ground.",
                "It is like an invisible hand that keeps pulling things downwards.",
                "It is like a lift going down: everything moves towards the bottom.",
            ],
            "real_world_examples": [
                "Rain falling from the clouds.",
                "A ball rolling down a hill.",
                "Leaves dropping from trees in autumn.",
            ],
            "common_misconceptions": [
                "Believing heavy things always fall faster.",
                "Not realising gravity also acts in space.",
                "Believing gravity needs air to work.",
            ],
            "visual_aids": [
                "The Earth with arrows pointing to its centre.",
                "Different objects falling side by side.",
                "A diagram of a falling object's path.",
            ],
        },
    },
    "programming": {
        "variables": {
            "title": "Variables",
            "difficulty_tier": "basic",
            "guiding_questions": [
                "If you wanted to remember your friend's name, where would you write it?",
                "How do you keep track of important information in daily life?",
                "What would you do if your friend changed their name?",
                "How do you organise things at home? Does everything have a set place?",
                "What is the difference between a box labelled 'books' and one labelled 'clothes'?",
            ],
            "analogies": [
                "A variable is like a labelled box: you put something inside and can swap it later.",
                "It is like a pocket with a name: the shirt pocket can hold different things over time.",
                "It is like the label on a jar: the label is the name and the contents are the value.",
            ],
            "real_world_examples": [
                "Saving a friend's phone number under their name.",
                "Writing a shopping list and editing it as you go.",
                "Keeping money in a wallet marked 'pocket money'.",
            ],
            "common_misconceptions": [
                "Believing a variable and its value are the same thing.",
                "Not realising a variable can hold different values over time.",
                "Confusing the variable's name with its value.",
            ],
            "visual_aids": [
                "Boxes with different labels.",
                "A diagram of a variable as a container.",
                "A table of variable names and their values.",
            ],
        },
        "loops": {
            "title": "Loops",
            "difficulty_tier": "intermediate",
            "guiding_questions": [
                "How do you brush your teeth each day? Do you repeat the same steps?",
                "If you wanted to count from 1 to 100, would you write every number by hand?",
                "When folding laundry, do you repeat the same motion for each piece?",
                "What makes you stop counting?",
                "How could a computer know when to stop repeating?",
            ],
            "analogies": [
                "A loop is like a song on repeat: the same tune plays until you stop it.",
                "It is like walking laps around a track until you decide to leave.",
                "It is like a washing machine repeating its cycle until the programme ends.",
            ],
            "real_world_examples": [
                "Counting sheep to fall asleep.",
                "Repeating sets of exercises at the gym.",
                "Reading the pages of a book one after another.",
            ],
            "common_misconceptions": [
                "Overlooking the importance of the stopping condition.",
                "Believing every loop runs forever.",
                "Mixing up the different kinds of loops.",
            ],
            "visual_aids": [
                "A circle with arrows showing repetition.",
                "A flowchart of a loop.",
                "A table of a variable's value on each pass.",
            ],
        },
    },
}

FALLBACK_TEMPLATES: Sequence[str] = (
    "What do you already know about {topic}?",
    "Can you give me an everyday example of {topic}?",
    "Why do you think {topic} matters?",
    "How do you think {topic} works?",
    "What makes you curious about {topic}?",
)


def fallback_questions(topic: str) -> List[str]:
    """Fill the fallback templates for a topic; deterministic for a given input."""
    label = topic.replace("_", " ").strip() or "this topic"
    return [template.format(topic=label) for template in FALLBACK_TEMPLATES]
