"studylog: weekly study log, absences and approvals for one school."
