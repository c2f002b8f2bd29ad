"""Minimal demonstration of the streaming chat engine."""

from ollama_chat.api import service

if __name__ == "__main__":
    question = "Explain in two sentences what a continuation context is."
    reply = service.send_message(question)
    print("User:", question)
    print("Assistant:", reply["assistant_message"]["text"])
    print("Status:", reply["status"])
