"""
Onboarding module.

- Standard checklist created with each employee record, plus custom items
- Document items need an upload and HR verification before they complete
- Psychometric items complete only from a submitted attempt
- Progress is recalculated on every item change; 100% activates the employee
"""
