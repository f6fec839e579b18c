"""Infrastructure components for the interview session engine.

Production implementations of the collaborator protocols in
``wingman.interview.services``: media devices, speech, storage, the
Gemini client and the web application's REST API. Import the
subpackages directly; they pull in heavy cloud SDKs.
"""
