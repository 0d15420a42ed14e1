"""Constants for the emergency call flow."""
from app.services.call_session.models import CallState

# Spoken when the simulated connection completes
GREETING_TEMPLATE = (
    "Hello, this is {assistant_name}, your virtual medical assistant. "
    "I'm here with you. Can you tell me what's happening?"
)

# Substituted when transcription or reasoning fails so the caller is never stranded.
# NOTE: canned medical content; it can mask a genuine transcription failure.
FALLBACK_TRANSCRIPT = "I'm having chest pain and it's hard to breathe."

FALLBACK_REPLY = (
    "I understand you're having chest pain. Please sit down, stay as calm as you can, "
    "and take slow, deep breaths. If the pain is severe or spreads to your arm, jaw, "
    "or back, call your local emergency number right away. When did the pain start?"
)

PERMISSION_DENIED_MESSAGE = "Sorry, we need audio permissions to make this work!"

DEVICE_BUSY_MESSAGE = "The microphone is already in use. The call has been ended."

# Allowed transitions of the call state machine
ALLOWED_TRANSITIONS = {
    CallState.IDLE: {CallState.CONNECTING, CallState.ENDED},
    CallState.CONNECTING: {CallState.AWAITING_GREETING_PLAYBACK, CallState.ENDED},
    CallState.AWAITING_GREETING_PLAYBACK: {
        CallState.SPEAKING,
        CallState.LISTENING,
        CallState.IDLE,
        CallState.ENDED,
    },
    CallState.SPEAKING: {CallState.LISTENING, CallState.IDLE, CallState.ENDED},
    CallState.LISTENING: {CallState.PROCESSING, CallState.ENDED},
    CallState.PROCESSING: {CallState.SPEAKING, CallState.ENDED},
    CallState.ENDED: {CallState.IDLE, CallState.ENDED},
}

# Primary button action per state; None means the button is disabled
PRIMARY_ACTIONS = {
    CallState.IDLE: "start",
    CallState.CONNECTING: None,
    CallState.AWAITING_GREETING_PLAYBACK: None,
    CallState.LISTENING: "stop_listening",
    CallState.PROCESSING: None,
    CallState.SPEAKING: None,
    CallState.ENDED: "start",
}
