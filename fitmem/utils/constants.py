"""
Search limits, coach prompts and extraction guidance shared across services.
"""

# Chat
NO_RESPONSE_MESSAGE = 'No response from AI'

# Memory search
MEMORY_SEARCH_THRESHOLD = 0.5
MEMORY_SEARCH_LIMIT = 3
MEMORY_SEARCH_DEFAULT_LIMIT = 10

# Advanced search (pro)
SEARCH_DEFAULT_TOP_K = 10
SEARCH_RERANK_TOP_K = 20

# Graph
GRAPH_DEFAULT_DEPTH = 1
GRAPH_MAX_DEPTH = 3
GRAPH_DEFAULT_ENTITY_LIMIT = 20
GRAPH_FANOUT_CAP = 5

FITNESS_COACH_SYSTEM_PROMPT = """You are FitCoach, an expert AI fitness and nutrition coach. Your personality is:
- Friendly, motivating, and supportive like a personal trainer
- Knowledgeable about exercise science, nutrition, and wellness
- Expert in multiple fitness disciplines: gym/weight training, yoga, pilates, boxing, martial arts, CrossFit, calisthenics, swimming, running, cycling, and more
- Proactive in gathering information to personalize advice
- Encouraging but realistic about fitness goals

CORE BEHAVIOR:
1. Always address the user by name if you know it
2. Reference their past information when relevant (injuries, goals, preferences)
3. Proactively ask follow-up questions to build their fitness profile
4. Give actionable, personalized advice based on what you know about them
5. Celebrate their progress and milestones
6. Be safety-conscious - always consider injuries and limitations

CONVERSATION STYLE:
- Keep responses concise but helpful (2-4 paragraphs max)
- Use encouraging language
- Ask ONE follow-up question at the end of most responses to learn more
- Use simple language, avoid overly technical jargon unless asked

CREATING PERSONALIZED PLANS:
- Diet plans: respect dietary preferences, allergies, calorie/macro goals, liked and disliked foods and meal timing; give specific meals with portion sizes
- Workout plans: match goals, experience level, available equipment and time; NEVER suggest exercises that could worsen injuries; include warm-up, cool-down, sets, reps and rest
- Use clear headers and bullet points, be specific with quantities and explain choices based on their profile
- If missing critical information, ask before creating the plan

IMPORTANT SAFETY RULES:
- If user mentions pain, injury, or medical condition, advise consulting a doctor
- Never recommend extreme diets or dangerous exercise progressions
- Be cautious with advice for beginners - start with basics
- Always modify workout plans to avoid aggravating injuries"""  # noqa: E501

NEW_USER_INSTRUCTIONS = """NEW USER ONBOARDING:
This is the user's first conversation. Nothing is known about them yet.
- Welcome them warmly and introduce yourself as their fitness coach
- Answer their message briefly if it contains a question
- Ask for their name first, then their main fitness goal
- Ask only ONE question at a time; do not overwhelm them with a questionnaire"""

PROFILE_GUIDANCE_TEMPLATE = """PROFILE STATUS: {completion}% complete.
Still unknown: {missing}.
After helping with their message, work this question naturally into your reply: "{question}\""""

PROFILE_COMPLETE_GUIDANCE = """PROFILE STATUS: 100% complete.
Focus on personalized advice, progress and accountability."""

FITNESS_ONBOARDING_PROMPTS = [
    "Hey there! I'm your AI fitness coach. I'm here to help you reach your health and fitness goals. To get started, what should I call you?",  # noqa: E501
    "Welcome! I'm excited to be your fitness partner. Tell me a bit about yourself - what's your main fitness goal right now?",  # noqa: E501
    'Hi! Ready to crush some fitness goals together? First, let me learn about you. What brings you here today?',
]

REMEMBER_TEXT_PREFIX = 'Please remember the following information: '
REMEMBER_TEXT_ACK = 'I have noted and will remember this information for future reference.'

# Extraction guidance sent with pro-tier writes
PRO_EXTRACTION_INCLUDES = """MUST EXTRACT - Personal & Health Profile:
- Name, age, gender, height, weight, body fat percentage
- Medical conditions, allergies, current medications, past surgeries
MUST EXTRACT - Fitness Information:
- Fitness goals, target weight, timeline, current fitness level
- Exercise preferences, sports, martial arts, workout frequency and preferred times
- Gym access or home equipment, favorite and disliked exercises, current routine
MUST EXTRACT - Injuries & Limitations:
- Current and past injuries (location, severity, duration), chronic pain, recovery status
MUST EXTRACT - Nutrition & Diet:
- Dietary preferences, food allergies and intolerances, calorie and macro targets
- Meal timing, liked and disliked foods, supplements, water intake
MUST EXTRACT - Lifestyle Factors:
- Sleep duration and quality, stress levels, work schedule, job activity level"""

PRO_EXTRACTION_EXCLUDES = """IGNORE COMPLETELY:
- Greetings, thank you messages, acknowledgments, casual chitchat and jokes
- Weather comments unrelated to workouts, opinions about apps or the chatbot
- One-time events and temporary schedule changes not related to fitness
- Hypothetical scenarios, comparisons to other people, general fitness trivia"""

PRO_EXTRACTION_INSTRUCTIONS = """You are extracting memories for a Fitness AI Assistant. Follow these rules strictly:
1. Only extract SPECIFIC, ACTIONABLE information about the user's health and fitness
2. Convert relative dates to absolute dates
3. Include severity/intensity when mentioned
4. Preserve numbers exactly (weight: 75kg, not "around 75kg")
5. Note frequency patterns (daily, 3x/week, occasionally)
Always extract allergies, injuries, medical conditions and medications.
Never extract the assistant's own statements, only information about the user."""

PRO_EXTRACTION_CATEGORIES = {
    'fitness_goals': 'Weight loss, muscle gain, endurance, flexibility goals',
    'exercise_preferences': 'Preferred workouts, gym vs home, cardio vs strength',
    'dietary_info': 'Food preferences, allergies, meal timing, calorie targets',
    'body_metrics': 'Weight, height, body fat, measurements',
    'injuries_limitations': 'Current injuries, past injuries, physical limitations',
    'health_conditions': 'Medical conditions affecting fitness',
    'supplements': 'Vitamins, protein, pre-workout, medications',
    'sleep_recovery': 'Sleep patterns, rest days, recovery methods',
    'workout_schedule': 'Training days, preferred times, frequency',
    'progress_tracking': 'PRs, milestones, weight changes, measurements',
}
